#!/usr/bin/env python3
"""Sample data source generator.

Writes synthetic BASCAR / PAGAPL style inputs plus a matching run manifest,
so a full ``cobranza-ingest run`` can be exercised against a local database:

- BASCAR as a multi-sheet workbook (``--format xlsx``) or a ``;`` CSV
- PAGAPL as a Latin-1 CSV (accented names) with a sprinkling of backslashes
- ``manifest.yml`` pointing at both under ``completed/<upload_id>/``
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import yaml

BACKSLASH = "\\"


def generate_bascar(rows: int, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "NUM_TOMADOR": [f"{n}" for n in rng.integers(800_000_000, 999_999_999, rows)],
            "FECHA_INICIO_VIG": pd.date_range("2024-01-01", periods=rows, freq="h").strftime("%d/%m/%Y"),
            # thousands with ".", decimals with ","
            "VALOR_TOTAL_FACT": [
                f"{v:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
                for v in rng.uniform(10_000, 5_000_000, rows)
            ],
            "RAZON_SOCIAL": [f"Empresa {i} S.A.S" for i in range(1, rows + 1)],
        }
    )


def generate_pagapl(rows: int, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed + 1)
    names = ["Peñalosa", "Muñoz", "Gómez", "Núñez", "Ibáñez"]
    return pd.DataFrame(
        {
            "NIT": [f"{n}" for n in rng.integers(800_000_000, 999_999_999, rows)],
            "APORTANTE": [
                names[i % len(names)] + (BACKSLASH if i % 97 == 0 else "") + " Ltda"
                for i in range(rows)
            ],
            "VALOR_PAGADO": rng.integers(50_000, 2_000_000, rows),
            "PERIODO": rng.choice(["202401", "202402", "202403"], rows),
        }
    )


def write_sources(
    root: Path, rows: int, sheets: list[str], fmt: str, run_id: int, seed: int
) -> Path:
    bascar_dir = root / "completed" / f"bascar-sample-{run_id:04d}"
    pagapl_dir = root / "completed" / f"pagapl-sample-{run_id:04d}"
    bascar_dir.mkdir(parents=True, exist_ok=True)
    pagapl_dir.mkdir(parents=True, exist_ok=True)

    if fmt == "xlsx":
        bascar_path = bascar_dir / "bascar.xlsx"
        with pd.ExcelWriter(bascar_path, engine="openpyxl") as writer:
            for i, sheet in enumerate(sheets):
                generate_bascar(rows, seed + i).to_excel(writer, sheet_name=sheet, index=False)
    else:
        bascar_path = bascar_dir / "bascar.csv"
        generate_bascar(rows, seed).to_csv(bascar_path, sep=";", index=False)

    pagapl_path = pagapl_dir / "pagapl.csv"
    generate_pagapl(rows, seed).to_csv(pagapl_path, sep=";", index=False, encoding="latin-1")

    manifest = {
        "run_id": run_id,
        "notice_type": "aviso_incumplimiento_aportantes",
        "period": "202403",
        "files": {
            "BASCAR": bascar_path.relative_to(root).as_posix(),
            "PAGAPL": pagapl_path.relative_to(root).as_posix(),
        },
    }
    manifest_path = root / "manifest.yml"
    manifest_path.write_text(yaml.safe_dump(manifest, sort_keys=False), encoding="utf-8")
    return manifest_path


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate sample collection notice inputs")
    parser.add_argument("root", type=Path, help="Storage root to write into")
    parser.add_argument("--rows", type=int, default=10_000, help="Rows per sheet / file (default: 10,000)")
    parser.add_argument("--sheets", nargs="+", default=["Hoja1", "Hoja2"], help="BASCAR sheet names")
    parser.add_argument("--format", choices=("xlsx", "csv"), default="xlsx", help="BASCAR file format")
    parser.add_argument("--run-id", type=int, default=1)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1

    manifest = write_sources(args.root, args.rows, args.sheets, args.format, args.run_id, args.seed)
    print(f"Sample sources written under {args.root}")
    print(f"  Manifest: {manifest}")
    print(f"  Rows per source: {args.rows:,}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
