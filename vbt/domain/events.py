"""Domain events published by the scheduler.

Events are delivered through the EventBus in publish order, decoupling the
scheduler from logging, console output and run history.

See `infrastructure/event_bus.py` for the delivery rules.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel

from .models import FailureKind, JobRecord, MetricsSnapshot, ProcessingSummary, UNKNOWN_STAGE


class Event(BaseModel):
    """Base class for all domain events.

    Subscribing to ``Event`` receives every event on the bus.
    """

    pass


class Started(Event):
    """Emitted when the scheduler leaves IDLE."""

    concurrency_limit: int
    queued_count: int


class JobEvent(Event):
    """Base class for events related to a single job."""

    job_id: str
    path: Path


class JobStarted(JobEvent):
    """Emitted when a record is dispatched to the runner."""

    concurrent_count: int
    queued_count: int


class JobProgress(JobEvent):
    """Emitted each time the runner reports progress."""

    fraction: float
    concurrent_count: int
    queued_count: int


class JobCompleted(JobEvent):
    """Emitted when a job succeeds. ``record`` is final and immutable."""

    record: JobRecord


class VideoFailed(JobEvent):
    """Emitted when a job fails, is cancelled, or is force-stopped."""

    reason: str
    stage: str = UNKNOWN_STAGE
    kind: FailureKind = FailureKind.ERROR
    record: Optional[JobRecord] = None


class Paused(Event):
    in_flight_count: int


class Resumed(Event):
    queued_count: int


class Stopped(Event):
    """Emitted once every in-flight job reached a terminal state after stop()."""

    cancelled_count: int
    forced_count: int
    queued_count: int


class Finished(Event):
    """Emitted on the automatic RUNNING -> FINISHED transition."""

    processed_count: int
    failed_count: int
    total_duration: float
    metrics: MetricsSnapshot
    summary: ProcessingSummary


class ConcurrencyReduced(Event):
    """Emitted when memory pressure lowers the concurrency limit."""

    old_limit: int
    new_limit: int
    memory_bytes: int
