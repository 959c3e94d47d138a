from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm

"""Load progress on the terminal.

One tqdm bar advances per data source; multi-sheet sources add a line per
sheet through ``tqdm.write`` so the bar is not torn. Nothing is drawn when
stdout is not a TTY; the log lines already cover CI and cron runs.
"""

__all__ = [
    "LoadProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class LoadProgress:
    def __init__(self, total_sources: int, *, label: str = "load") -> None:
        self.label = label
        self.sources_done = 0
        self._bar: Any = None
        if is_tty_enabled():
            self._bar = tqdm(total=total_sources, desc=label, unit="source", ncols=80, ascii=True)

    @property
    def enabled(self) -> bool:
        return self._bar is not None

    def begin_source(self, code: str) -> None:
        if self._bar is not None:
            self._bar.set_description(f"{self.label} {code}")

    def sheet_done(self, code: str, sheet_name: str, rows: int | None) -> None:
        """``rows`` None marks a sheet whose load failed."""
        if self._bar is None:
            return
        outcome = "failed" if rows is None else f"{rows:,} rows"
        self._bar.write(f"  {code} / {sheet_name}: {outcome}")

    def end_source(self, rows: int, errors: int) -> None:
        self.sources_done += 1
        if self._bar is not None:
            self._bar.set_postfix(rows=rows, errors=errors)
            self._bar.update(1)

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def __enter__(self) -> LoadProgress:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
