from __future__ import annotations

import time
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Protocol

from ..models.run import CollectionRun, RunResult, RunStatus
from .context import IngestServices

"""Run orchestration.

A pipeline is an ordered list of step objects. ``run_pipeline`` walks it,
moves the run through its statuses and stops at the first failing step:

- a step announces the status the run is in while it executes
  (``running_status``), the status on success (``completed_status``, optional)
  and the status a ``StepError`` leaves the run in (``failure_status``)
- ``StepError`` is the anticipated failure of a stage (invalid upload,
  conversion failure, COPY rejected, ...): the run is marked, nothing raised
- any other exception is unexpected: the run is marked failed and the
  exception propagates
"""

__all__ = [
    "Step",
    "StepError",
    "run_pipeline",
]


class StepError(Exception):
    """A pipeline stage failed; the message is recorded on the run."""


class Step(Protocol):
    name: str
    running_status: RunStatus
    completed_status: RunStatus | None
    failure_status: RunStatus

    def should_execute(self, run: CollectionRun, services: IngestServices) -> bool: ...

    def execute(self, run: CollectionRun, services: IngestServices) -> None: ...


def run_pipeline(
    run: CollectionRun, steps: Sequence[Step], services: IngestServices
) -> RunResult:
    log = services.logger
    run.started_at = datetime.now(UTC)
    log.info(f"run start run_id={run.run_id} notice_type={run.notice_type.value} steps={len(steps)}")

    try:
        for step in steps:
            if not step.should_execute(run, services):
                log.debug(f"step skipped step={step.name} run_id={run.run_id}")
                continue
            if run.status is not step.running_status:
                run.transition(step.running_status)
            log.info(f"step start step={step.name} run_id={run.run_id}")
            started = time.perf_counter()
            try:
                step.execute(run, services)
            except StepError as e:
                message = f'step "{step.name}" failed: {e}'
                log.error(f"{message} run_id={run.run_id}")
                run.fail(step.failure_status, message)
                return RunResult.from_run(_finish(run))
            duration_ms = int((time.perf_counter() - started) * 1000)
            log.info(f"step done step={step.name} run_id={run.run_id} duration_ms={duration_ms}")
            if step.completed_status is not None:
                run.transition(step.completed_status)
    except Exception as e:
        run.fail(RunStatus.FAILED, f"unexpected error: {e}")
        log.error(f"run aborted run_id={run.run_id}: {e}")
        _finish(run)
        raise

    run.transition(RunStatus.COMPLETED)
    result = RunResult.from_run(_finish(run))
    log.info(
        f"run completed run_id={run.run_id} rows={result.total_rows} "
        f"error_rows={result.error_rows} elapsed_sec={result.elapsed_seconds:.2f}"
    )
    return result


def _finish(run: CollectionRun) -> CollectionRun:
    run.finished_at = datetime.now(UTC)
    return run
