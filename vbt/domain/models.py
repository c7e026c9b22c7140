import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class JobState(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED})


class RunState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    FINISHED = "FINISHED"


class FailureKind(str, Enum):
    ERROR = "ERROR"  # runner rejected or crashed
    CANCELLED = "CANCELLED"  # honoured stop() cooperatively
    FORCED_STOP = "FORCED_STOP"  # killed after the grace period


UNKNOWN_STAGE = "unknown"
STOPPED_BY_CALLER = "stopped by caller"


class RecordFinalError(AttributeError):
    """Raised when something writes to a finished JobRecord."""


class FailureReason(BaseModel):
    message: str
    stage: str = UNKNOWN_STAGE
    timestamp: datetime = Field(default_factory=lambda: datetime.now().astimezone())
    kind: FailureKind = FailureKind.ERROR

    @property
    def is_cancellation(self) -> bool:
        return self.kind in (FailureKind.CANCELLED, FailureKind.FORCED_STOP)


class JobRecord(BaseModel):
    """One source file moving through the scheduler.

    ``source_path`` can never be reassigned, and once the record reaches
    SUCCEEDED or FAILED every assignment raises ``RecordFinalError``.
    """

    source_path: Path
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    options: Dict[str, Any] = Field(default_factory=dict)
    state: JobState = JobState.QUEUED
    input_size: Optional[int] = None
    output_size: Optional[int] = None
    output_path: Optional[Path] = None
    submitted_at: datetime = Field(default_factory=lambda: datetime.now().astimezone())
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    failure: Optional[FailureReason] = None
    progress: float = Field(default=0.0, ge=0.0, le=1.0)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "source_path":
            raise RecordFinalError("source_path is immutable")
        if self.state in TERMINAL_STATES:
            raise RecordFinalError(f"Job {self.job_id} ({self.source_path.name}) is already {self.state.value}")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def compression_ratio(self) -> float:
        if not self.input_size or self.output_size is None:
            return 0.0
        return self.output_size / self.input_size

    def mark_running(self, started_at: Optional[datetime] = None) -> None:
        self.started_at = started_at or datetime.now().astimezone()
        self.state = JobState.RUNNING

    def mark_succeeded(
        self,
        input_size: int,
        output_size: int,
        duration_seconds: float,
        output_path: Optional[Path] = None,
    ) -> None:
        self.input_size = input_size
        self.output_size = output_size
        self.output_path = output_path
        self.duration_seconds = duration_seconds
        self.progress = 1.0
        self.finished_at = datetime.now().astimezone()
        # state last: the record freezes on this assignment
        self.state = JobState.SUCCEEDED

    def mark_failed(self, failure: FailureReason, duration_seconds: Optional[float] = None) -> None:
        self.failure = failure
        self.duration_seconds = duration_seconds
        self.finished_at = failure.timestamp
        self.state = JobState.FAILED

    def resubmission(self) -> "JobRecord":
        """A fresh QUEUED record for the same file and options."""
        return JobRecord(source_path=self.source_path, options=dict(self.options))


class JobRequest(BaseModel):
    """What a JobRunner receives for one dispatched record."""

    job_id: str
    source_path: Path
    options: Dict[str, Any] = Field(default_factory=dict)
    hw_accel: List[str] = Field(default_factory=list)
    output_dir: Optional[Path] = None


class RunResult(BaseModel):
    input_size: int = Field(ge=0)
    output_size: int = Field(ge=0)
    output_path: Optional[Path] = None


class MetricsSnapshot(BaseModel):
    processed_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    total_input_bytes: int = 0
    total_output_bytes: int = 0
    average_processing_seconds: float = 0.0
    peak_memory_bytes: int = 0
    current_memory_bytes: int = 0


class FailureEntry(BaseModel):
    path: Path
    message: str
    stage: str
    kind: FailureKind


class ProcessingSummary(BaseModel):
    file_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    total_duration_seconds: float = 0.0
    average_duration_seconds: float = 0.0
    total_input_bytes: int = 0
    total_output_bytes: int = 0
    compression_ratio: float = 0.0
    space_saved_bytes: int = 0
    peak_memory_bytes: int = 0
    failures: List[FailureEntry] = Field(default_factory=list)


class StatusSnapshot(BaseModel):
    run_state: RunState
    queued: int
    in_flight: int
    completed: int
    failed: int
    concurrency_limit: int
    metrics: MetricsSnapshot
    capabilities: List[str] = Field(default_factory=list)

    @property
    def hw_accel_available(self) -> bool:
        return bool(self.capabilities)
