"""Exceptions raised by the scheduler and by job runners.

Only admission and lifecycle errors reach the caller of a Scheduler method.
Runner-side errors are caught at the job boundary and recorded on the
failed JobRecord instead.
"""

from pathlib import Path
from typing import Optional

from vbt.domain.models import UNKNOWN_STAGE, RecordFinalError, RunState

__all__ = [
    "SchedulerError",
    "AdmissionError",
    "NotFoundError",
    "NotReadableError",
    "NotAcceptingError",
    "LifecycleError",
    "AlreadyRunningError",
    "NotRunningError",
    "NotPausedError",
    "ResetNotAllowedError",
    "JobExecutionError",
    "JobCancelledError",
    "RecordFinalError",
]


class SchedulerError(Exception):
    """Base class for errors surfaced synchronously by the Scheduler."""


class AdmissionError(SchedulerError):
    def __init__(self, path: Path, message: str):
        self.path = Path(path)
        super().__init__(f"{message}: {path}")


class NotFoundError(AdmissionError):
    def __init__(self, path: Path):
        super().__init__(path, "File not found")


class NotReadableError(AdmissionError):
    def __init__(self, path: Path, reason: str = "File is not readable"):
        super().__init__(path, reason)


class NotAcceptingError(AdmissionError):
    def __init__(self, path: Path, state: RunState):
        self.state = state
        super().__init__(path, f"Scheduler is {state.value} and no longer accepts jobs")


class LifecycleError(SchedulerError):
    def __init__(self, operation: str, state: RunState, message: Optional[str] = None):
        self.operation = operation
        self.state = state
        super().__init__(message or f"Cannot {operation}() while {state.value}")


class AlreadyRunningError(LifecycleError):
    def __init__(self, state: RunState):
        super().__init__("start", state, f"Scheduler already started (state={state.value})")


class NotRunningError(LifecycleError):
    def __init__(self, state: RunState):
        super().__init__("pause", state, f"Scheduler is not running (state={state.value})")


class NotPausedError(LifecycleError):
    def __init__(self, state: RunState):
        super().__init__("resume", state, f"Scheduler is not paused (state={state.value})")


class ResetNotAllowedError(LifecycleError):
    def __init__(self, state: RunState):
        super().__init__("reset", state)


class JobExecutionError(Exception):
    """Raised by a runner when a job fails; carries the failing stage."""

    def __init__(self, message: str, stage: str = UNKNOWN_STAGE):
        self.stage = stage or UNKNOWN_STAGE
        super().__init__(message)


class JobCancelledError(JobExecutionError):
    """Raised by a runner that stopped because the job was cancelled."""

    def __init__(self, message: str = "cancelled", stage: str = UNKNOWN_STAGE):
        super().__init__(message, stage)
