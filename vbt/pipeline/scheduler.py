"""Job scheduler: bounded-concurrency dispatch of transcode jobs.

Owns the pending queue, the in-flight set, the concurrency limit and the
run/pause/stop state machine. Work is delegated to a JobRunner on worker
threads; everything else (admission, lifecycle, failure isolation, resource
backpressure and metrics) happens here.

Threading model:
- one dispatch-loop thread moves records between collections and is the
  only thread that changes a record's state;
- worker threads (ThreadPoolExecutor) run ``JobRunner.run`` and report
  progress; completion is signalled back through future done-callbacks that
  wake the loop;
- ``add_video``, ``pause``, ``resume``, ``stop`` and the resource monitor
  run on caller/monitor threads and only touch shared state under
  ``_lock``, which is never held across a runner call or an event publish.

State machine:
    IDLE --start()--> RUNNING --pause()--> PAUSED --resume()--> RUNNING
    RUNNING/PAUSED --stop()--> SHUTTING_DOWN (terminal for a stopped run)
    RUNNING --(queue and in-flight empty)--> FINISHED
"""

import concurrent.futures
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple, Union

from vbt.config.models import AppConfig
from vbt.domain.errors import (
    AdmissionError,
    AlreadyRunningError,
    JobCancelledError,
    NotAcceptingError,
    NotFoundError,
    NotPausedError,
    NotReadableError,
    NotRunningError,
    ResetNotAllowedError,
)
from vbt.domain.events import (
    ConcurrencyReduced,
    Finished,
    JobCompleted,
    JobProgress,
    JobStarted,
    Paused,
    Resumed,
    Started,
    Stopped,
    VideoFailed,
)
from vbt.domain.models import (
    STOPPED_BY_CALLER,
    UNKNOWN_STAGE,
    FailureKind,
    FailureReason,
    JobRecord,
    JobRequest,
    JobState,
    ProcessingSummary,
    RecordFinalError,
    RunResult,
    RunState,
    StatusSnapshot,
)
from vbt.infrastructure.capability_probe import CapabilityProbe
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.resource_monitor import ResourceMonitor, process_rss_bytes
from vbt.pipeline.job_control import JobHandle
from vbt.pipeline.metrics import MetricsAggregator
from vbt.pipeline.runner import JobRunner

PathLike = Union[str, Path]

MAX_WORKERS = 16
# Extra time killed processes get to unwind before their records are abandoned
ABORT_WAIT_S = 2.0
# Upper bound on how stale a pause/stop signal can be in the loop
MAX_POLL_S = 1.0


@dataclass
class _Outcome:
    result: Optional[RunResult] = None
    error: Optional[Exception] = None
    stage: str = UNKNOWN_STAGE


@dataclass
class _InFlight:
    record: JobRecord
    handle: JobHandle
    started: float = field(default_factory=time.monotonic)
    future: Optional[concurrent.futures.Future] = None


class Scheduler:
    """Bounded-concurrency transcode scheduler for one batch run.

    Args:
        config: AppConfig; ``general.threads`` is the initial concurrency
            limit, ``monitor`` configures memory backpressure.
        event_bus: EventBus receiving lifecycle, progress and report events.
        runner: JobRunner doing the actual work for each record.
        capability_probe: Optional probe; by default a CapabilityProbe is
            started in the background at construction.
        output_dir: Passed to every JobRequest.
        memory_sampler: Overrides the resource monitor's memory sampler.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        runner: JobRunner,
        capability_probe: Optional[CapabilityProbe] = None,
        output_dir: Optional[Path] = None,
        memory_sampler=None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.runner = runner
        self.output_dir = Path(output_dir) if output_dir else None
        self.logger = logging.getLogger(__name__)

        if config.general.threads < 1:
            raise ValueError("concurrency limit must be >= 1")

        self._lock = threading.Condition()
        self._dirty = False
        self._run_state = RunState.IDLE
        self._max_workers = max(MAX_WORKERS, config.general.threads)
        self._concurrency_limit = config.general.threads
        self._poll_interval = min(config.general.poll_interval_s, MAX_POLL_S)

        self._pending: Deque[JobRecord] = deque()
        self._in_flight: Dict[str, _InFlight] = {}
        self._finished: List[JobRecord] = []
        self._failed: List[JobRecord] = []
        # job_ids of failed records that already have a resubmission
        self._retried: Set[str] = set()
        self._abandon_in_flight = False
        self._stop_counts = {"cancelled": 0, "forced": 0}

        self._metrics = MetricsAggregator()
        self._summary: Optional[ProcessingSummary] = None
        self._started_monotonic: Optional[float] = None
        self._done_event = threading.Event()
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._loop_thread: Optional[threading.Thread] = None

        self.resource_monitor: Optional[ResourceMonitor] = None
        if config.monitor.enabled:
            self.resource_monitor = ResourceMonitor(
                on_pressure=self._on_memory_pressure,
                on_sample=self._on_memory_sample,
                threshold_bytes=config.monitor.memory_threshold_mb * 1024 * 1024,
                interval_s=config.monitor.interval_s,
                sampler=memory_sampler or process_rss_bytes,
            )

        if capability_probe is None:
            capability_probe = CapabilityProbe()
        self.capability_probe = capability_probe
        self.capability_probe.start()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def run_state(self) -> RunState:
        with self._lock:
            return self._run_state

    @property
    def concurrency_limit(self) -> int:
        with self._lock:
            return self._concurrency_limit

    @property
    def summary(self) -> Optional[ProcessingSummary]:
        """Final report; set on FINISHED and after stop() completes."""
        return self._summary

    @property
    def pending_records(self) -> List[JobRecord]:
        with self._lock:
            return list(self._pending)

    @property
    def in_flight_records(self) -> List[JobRecord]:
        with self._lock:
            return [entry.record for entry in self._in_flight.values()]

    @property
    def finished_records(self) -> List[JobRecord]:
        with self._lock:
            return list(self._finished)

    @property
    def failed_records(self) -> List[JobRecord]:
        with self._lock:
            return list(self._failed)

    def get_status(self) -> StatusSnapshot:
        """Point-in-time copy of the scheduler state. Never waits on jobs."""
        with self._lock:
            return StatusSnapshot(
                run_state=self._run_state,
                queued=len(self._pending),
                in_flight=len(self._in_flight),
                completed=len(self._finished),
                failed=len(self._failed),
                concurrency_limit=self._concurrency_limit,
                metrics=self._metrics.snapshot(),
                capabilities=self.capability_probe.tags,
            )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def add_video(self, path: PathLike, options: Optional[dict] = None) -> JobRecord:
        """Validates ``path`` and appends a QUEUED record to the pending queue."""
        path = Path(path)
        if not path.exists():
            self.logger.error(f"Failed to add {path}: not found")
            raise NotFoundError(path)
        if not path.is_file():
            self.logger.error(f"Failed to add {path}: not a regular file")
            raise NotReadableError(path, "Not a regular file")
        if not os.access(path, os.R_OK):
            self.logger.error(f"Failed to add {path}: permission denied")
            raise NotReadableError(path)

        record = JobRecord(source_path=path, options=dict(options or {}))
        with self._lock:
            if self._run_state in (RunState.SHUTTING_DOWN, RunState.FINISHED):
                raise NotAcceptingError(path, self._run_state)
            self._pending.append(record)
            queued = len(self._pending)
            self._wake_locked()
        self.logger.debug(f"QUEUED: {path.name} (queue={queued})")
        return record

    def add_videos(
        self, paths: Iterable[PathLike], options: Optional[dict] = None
    ) -> Tuple[List[JobRecord], List[AdmissionError]]:
        """Submits several paths in order; rejected ones are returned, not raised."""
        accepted: List[JobRecord] = []
        rejected: List[AdmissionError] = []
        for path in paths:
            try:
                accepted.append(self.add_video(path, options))
            except AdmissionError as e:
                rejected.append(e)
        return accepted, rejected

    def retry_failed(self) -> List[JobRecord]:
        """Resubmits every organically failed job as a new record.

        Each failed record is resubmitted at most once; a resubmission that
        fails again is itself eligible on the next call.
        """
        with self._lock:
            if self._run_state in (RunState.SHUTTING_DOWN, RunState.FINISHED):
                raise NotAcceptingError(Path("."), self._run_state)
            fresh = []
            for record in self._failed:
                if record.job_id in self._retried:
                    continue
                if record.failure is not None and record.failure.kind != FailureKind.ERROR:
                    continue
                self._retried.add(record.job_id)
                fresh.append(record.resubmission())
            self._pending.extend(fresh)
            self._wake_locked()
        if fresh:
            self.logger.info(f"Resubmitted {len(fresh)} failed jobs")
        return fresh

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """IDLE -> RUNNING. Non-blocking; use wait() or run() to block."""
        with self._lock:
            if self._run_state != RunState.IDLE:
                raise AlreadyRunningError(self._run_state)
            self._run_state = RunState.RUNNING
            self._started_monotonic = time.monotonic()
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="vbt-job"
            )
            limit = self._concurrency_limit
            queued = len(self._pending)

        self.logger.info(f"Starting scheduler with {limit} concurrent jobs ({queued} queued)")
        if self.resource_monitor:
            self.resource_monitor.start()
        self.event_bus.publish(Started(concurrency_limit=limit, queued_count=queued))

        self._loop_thread = threading.Thread(target=self._loop, name="vbt-dispatch", daemon=True)
        self._loop_thread.start()

    def pause(self) -> None:
        """RUNNING -> PAUSED. In-flight jobs are asked to pause, never killed."""
        with self._lock:
            if self._run_state != RunState.RUNNING:
                raise NotRunningError(self._run_state)
            self._run_state = RunState.PAUSED
            handles = [entry.handle for entry in self._in_flight.values()]
            self._wake_locked()

        for handle in handles:
            handle.pause()
        self.logger.info(f"Paused: {len(handles)} in-flight jobs asked to pause, no new dispatch")
        self.event_bus.publish(Paused(in_flight_count=len(handles)))

    def resume(self) -> None:
        """PAUSED -> RUNNING."""
        with self._lock:
            if self._run_state != RunState.PAUSED:
                raise NotPausedError(self._run_state)
            self._run_state = RunState.RUNNING
            handles = [entry.handle for entry in self._in_flight.values()]
            queued = len(self._pending)
            self._wake_locked()

        for handle in handles:
            handle.resume()
        self.logger.info(f"Resumed ({queued} queued)")
        self.event_bus.publish(Resumed(queued_count=queued))

    def stop(self, grace_seconds: Optional[float] = None) -> None:
        """RUNNING/PAUSED -> SHUTTING_DOWN. No-op in any other state.

        Cancels every in-flight job and waits up to ``grace_seconds``
        (default ``general.stop_grace_s``) for them to end. Stragglers are
        aborted (their external process is killed) and recorded as
        FORCED_STOP failures. Pending records stay queued.

        A runner that ignores both cancel and abort keeps its worker thread.
        Executor threads are joined at interpreter exit, so such a runner
        still delays process exit after its record is finalized.
        """
        with self._lock:
            if self._run_state not in (RunState.RUNNING, RunState.PAUSED):
                self.logger.debug(f"stop() ignored in state {self._run_state.value}")
                return
            self._run_state = RunState.SHUTTING_DOWN
            handles = [entry.handle for entry in self._in_flight.values()]
            self._wake_locked()

        self.logger.info(f"Stopping scheduler gracefully ({len(handles)} in-flight jobs)")
        for handle in handles:
            handle.cancel()

        if threading.current_thread() is self._loop_thread:
            # Called from an event subscriber on the loop thread; the loop
            # finishes the shutdown once this subscriber returns.
            return

        grace = self.config.general.stop_grace_s if grace_seconds is None else grace_seconds
        if not self._wait_in_flight_empty(grace):
            with self._lock:
                stragglers = [entry.handle for entry in self._in_flight.values()]
            self.logger.warning(f"FORCED_STOP: {len(stragglers)} jobs ignored cancellation for {grace:.1f}s")
            for handle in stragglers:
                handle.abort()
            if not self._wait_in_flight_empty(ABORT_WAIT_S):
                with self._lock:
                    self._abandon_in_flight = True
                    self._wake_locked()

        self._done_event.wait(grace + ABORT_WAIT_S + MAX_POLL_S)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until FINISHED or until a stop() completed."""
        return self._done_event.wait(timeout)

    def run(self, timeout: Optional[float] = None) -> Optional[ProcessingSummary]:
        """start() and block until the batch ends. Ctrl+C stops gracefully."""
        self.start()
        try:
            self.wait(timeout)
        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - stopping scheduler")
            self.stop()
            raise
        return self._summary

    def reset(self) -> None:
        """Clears all collections and metrics and returns to IDLE."""
        with self._lock:
            ended = self._done_event.is_set()
            if self._run_state != RunState.IDLE and not ended:
                raise ResetNotAllowedError(self._run_state)
            self._pending.clear()
            self._in_flight.clear()
            self._finished.clear()
            self._failed.clear()
            self._retried.clear()
            self._metrics.reset()
            self._concurrency_limit = self.config.general.threads
            self._abandon_in_flight = False
            self._stop_counts = {"cancelled": 0, "forced": 0}
            self._summary = None
            self._started_monotonic = None
            self._done_event = threading.Event()
            self._run_state = RunState.IDLE
        self.logger.info("Scheduler reset")

    def set_concurrency_limit(self, limit: int) -> int:
        """External reconfiguration; the only way to raise the limit again."""
        if limit < 1:
            raise ValueError("concurrency limit must be >= 1")
        with self._lock:
            old = self._concurrency_limit
            self._concurrency_limit = min(limit, self._max_workers)
            new = self._concurrency_limit
            self._wake_locked()
        if new != old:
            self.logger.info(f"Concurrency limit: {old} -> {new}")
        return new

    # ------------------------------------------------------------------
    # Resource pressure
    # ------------------------------------------------------------------

    def _on_memory_sample(self, used_bytes: int) -> None:
        self._metrics.record_memory(used_bytes)
        with self._lock:
            active = len(self._in_flight)
            limit = self._concurrency_limit
        self.logger.debug(
            f"MEMORY_SAMPLE: {used_bytes / (1024 * 1024):.1f}MB, active jobs {active}/{limit}"
        )

    def _on_memory_pressure(self, used_bytes: int) -> None:
        with self._lock:
            old = self._concurrency_limit
            if old <= 1:
                return
            self._concurrency_limit = old - 1
            new = self._concurrency_limit
        self.logger.info(f"Reduced concurrent jobs to {new} due to high memory usage")
        self.event_bus.publish(ConcurrencyReduced(old_limit=old, new_limit=new, memory_bytes=used_bytes))

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    def _wake_locked(self) -> None:
        self._dirty = True
        self._lock.notify_all()

    def _wake(self, _future=None) -> None:
        with self._lock:
            self._wake_locked()

    def _loop(self) -> None:
        while True:
            try:
                if self._loop_once():
                    return
            except Exception as e:
                # Never let a bug here strand the batch
                self.logger.exception(f"Dispatch loop error: {e}")
                time.sleep(self._poll_interval)

    def _loop_once(self) -> bool:
        """One pass of the dispatch loop. Returns True when the loop should exit."""
        self._harvest()

        launched: List[_InFlight] = []
        finished = False
        stopped = False
        abandoned: List[_InFlight] = []
        with self._lock:
            self._sync_paused_records_locked()
            state = self._run_state
            if state == RunState.RUNNING:
                while len(self._in_flight) < self._concurrency_limit and self._pending:
                    record = self._pending.popleft()
                    record.mark_running()
                    entry = _InFlight(record=record, handle=JobHandle(record.job_id, record.source_path))
                    self._in_flight[record.job_id] = entry
                    launched.append(entry)
                if not self._pending and not self._in_flight:
                    self._run_state = RunState.FINISHED
                    finished = True
            elif state == RunState.SHUTTING_DOWN:
                if self._abandon_in_flight:
                    abandoned = self._abandon_locked()
                stopped = not self._in_flight
            concurrent_count = len(self._in_flight)
            queued_count = len(self._pending)

            if not (launched or finished or stopped or abandoned) and not self._dirty:
                self._lock.wait(self._poll_interval)
            self._dirty = False

        for entry in abandoned:
            self._publish_failure(entry.record)
        for entry in launched:
            self._launch(entry, concurrent_count, queued_count)
        if finished:
            self._finish()
            return True
        if stopped:
            self._stopped()
            return True
        return False

    def _sync_paused_records_locked(self) -> None:
        if self._run_state == RunState.PAUSED:
            for entry in self._in_flight.values():
                if entry.record.state == JobState.RUNNING:
                    entry.record.state = JobState.PAUSED
        else:
            for entry in self._in_flight.values():
                if entry.record.state == JobState.PAUSED:
                    entry.record.state = JobState.RUNNING

    def _launch(self, entry: _InFlight, concurrent_count: int, queued_count: int) -> None:
        record = entry.record
        self.logger.info(
            f"DISPATCH: {record.source_path.name} (in_flight={concurrent_count}, queued={queued_count})"
        )
        # JobStarted goes out before the worker can publish progress
        self.event_bus.publish(JobStarted(
            job_id=record.job_id,
            path=record.source_path,
            concurrent_count=concurrent_count,
            queued_count=queued_count,
        ))
        request = JobRequest(
            job_id=record.job_id,
            source_path=record.source_path,
            options=dict(record.options),
            hw_accel=self.capability_probe.tags,
            output_dir=self.output_dir,
        )
        try:
            future = self._executor.submit(self._execute, request, entry)
        except RuntimeError as e:
            future = concurrent.futures.Future()
            future.set_result(_Outcome(error=e, stage="dispatch"))
        entry.future = future
        future.add_done_callback(self._wake)

    def _execute(self, request: JobRequest, entry: _InFlight) -> _Outcome:
        """Job boundary: runs on a worker thread and never raises."""
        filename = request.source_path.name
        handle = entry.handle
        self.logger.info(f"JOB_START: {filename} (hw_accel={request.hw_accel or 'none'})")
        try:
            result = self.runner.run(request, handle, self._progress_callback(entry))
            if not isinstance(result, RunResult):
                raise TypeError(f"runner returned {type(result).__name__}, expected RunResult")
            return _Outcome(result=result, stage=handle.stage)
        except JobCancelledError as e:
            stage = self._stage_of(e, handle)
            self.logger.info(f"JOB_CANCELLED: {filename} (stage={stage})")
            return _Outcome(error=e, stage=stage)
        except Exception as e:
            stage = self._stage_of(e, handle)
            self.logger.error(f"Exception processing {filename} (stage={stage}): {e}")
            return _Outcome(error=e, stage=stage)

    @staticmethod
    def _stage_of(error: Exception, handle: JobHandle) -> str:
        """The stage the error names, else the last stage the runner entered."""
        stage = getattr(error, "stage", None)
        if not stage or stage == UNKNOWN_STAGE:
            stage = handle.stage
        return stage or UNKNOWN_STAGE

    def _progress_callback(self, entry: _InFlight):
        record = entry.record

        def on_progress(fraction: float) -> None:
            fraction = min(1.0, max(0.0, float(fraction)))
            try:
                record.progress = fraction
            except RecordFinalError:
                return
            with self._lock:
                concurrent_count = len(self._in_flight)
                queued_count = len(self._pending)
            self.event_bus.publish(JobProgress(
                job_id=record.job_id,
                path=record.source_path,
                fraction=fraction,
                concurrent_count=concurrent_count,
                queued_count=queued_count,
            ))

        return on_progress

    def _outcome_of(self, entry: _InFlight) -> _Outcome:
        try:
            return entry.future.result()
        except (Exception, concurrent.futures.CancelledError) as e:
            self.logger.error(f"Future failed with exception: {e}")
            return _Outcome(error=e, stage=entry.handle.stage)

    def _harvest(self) -> None:
        with self._lock:
            done = [
                entry for entry in self._in_flight.values()
                if entry.future is not None and entry.future.done()
            ]
        if not done:
            return

        for entry in done:
            outcome = self._outcome_of(entry)
            elapsed = time.monotonic() - entry.started
            with self._lock:
                if self._in_flight.get(entry.record.job_id) is not entry:
                    continue
                if outcome.result is not None:
                    self._succeed_locked(entry, outcome.result, elapsed)
                else:
                    self._fail_locked(entry, self._failure_for(entry, outcome), elapsed)
                self._lock.notify_all()

            record = entry.record
            if record.state == JobState.SUCCEEDED:
                self.logger.info(
                    f"JOB_END: {record.source_path.name} status=succeeded elapsed={elapsed:.2f}s "
                    f"ratio={record.compression_ratio:.2f}"
                )
                self.event_bus.publish(JobCompleted(job_id=record.job_id, path=record.source_path, record=record))
            else:
                self.logger.info(
                    f"JOB_END: {record.source_path.name} status=failed kind={record.failure.kind.value} "
                    f"elapsed={elapsed:.2f}s"
                )
                self._publish_failure(record)

    def _failure_for(self, entry: _InFlight, outcome: _Outcome) -> FailureReason:
        handle = entry.handle
        stage = outcome.stage or UNKNOWN_STAGE
        if handle.aborted:
            return FailureReason(message=STOPPED_BY_CALLER, stage=stage, kind=FailureKind.FORCED_STOP)
        if handle.cancelled:
            return FailureReason(message=STOPPED_BY_CALLER, stage=stage, kind=FailureKind.CANCELLED)
        error = outcome.error
        message = str(error) if error is not None and str(error) else type(error).__name__
        return FailureReason(message=message, stage=stage, kind=FailureKind.ERROR)

    def _succeed_locked(self, entry: _InFlight, result: RunResult, elapsed: float) -> None:
        record = entry.record
        record.mark_succeeded(
            input_size=result.input_size,
            output_size=result.output_size,
            duration_seconds=elapsed,
            output_path=result.output_path,
        )
        del self._in_flight[record.job_id]
        self._finished.append(record)
        self._metrics.record_success(result.input_size, result.output_size, elapsed)

    def _fail_locked(self, entry: _InFlight, failure: FailureReason, elapsed: Optional[float]) -> None:
        record = entry.record
        record.mark_failed(failure, duration_seconds=elapsed)
        del self._in_flight[record.job_id]
        self._failed.append(record)
        self._metrics.record_failure(record.source_path, failure)
        if failure.kind == FailureKind.CANCELLED:
            self._stop_counts["cancelled"] += 1
        elif failure.kind == FailureKind.FORCED_STOP:
            self._stop_counts["forced"] += 1

    def _abandon_locked(self) -> List[_InFlight]:
        """Records every remaining in-flight job as force-stopped."""
        abandoned = list(self._in_flight.values())
        for entry in abandoned:
            self.logger.warning(f"FORCED_STOP: {entry.record.source_path.name} abandoned after abort")
            failure = FailureReason(
                message=STOPPED_BY_CALLER, stage=entry.handle.stage, kind=FailureKind.FORCED_STOP
            )
            self._fail_locked(entry, failure, time.monotonic() - entry.started)
        self._abandon_in_flight = False
        self._lock.notify_all()
        return abandoned

    def _publish_failure(self, record: JobRecord) -> None:
        failure = record.failure
        self.event_bus.publish(VideoFailed(
            job_id=record.job_id,
            path=record.source_path,
            reason=failure.message,
            stage=failure.stage,
            kind=failure.kind,
            record=record,
        ))

    def _wait_in_flight_empty(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        with self._lock:
            while self._in_flight:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._lock.wait(min(remaining, self._poll_interval))
            return True

    # ------------------------------------------------------------------
    # Terminal paths
    # ------------------------------------------------------------------

    def _elapsed(self) -> float:
        if self._started_monotonic is None:
            return 0.0
        return time.monotonic() - self._started_monotonic

    def _release_resources(self) -> None:
        if self.resource_monitor:
            self.resource_monitor.stop()
        if self._executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _finish(self) -> None:
        total = self._elapsed()
        summary = self._metrics.summary(total)
        metrics = self._metrics.snapshot()
        self._summary = summary
        self._release_resources()
        self._log_summary(summary)
        self.event_bus.publish(Finished(
            processed_count=summary.file_count,
            failed_count=len(summary.failures),
            total_duration=total,
            metrics=metrics,
            summary=summary,
        ))
        self._done_event.set()

    def _stopped(self) -> None:
        self._summary = self._metrics.summary(self._elapsed())
        self._release_resources()
        with self._lock:
            counts = dict(self._stop_counts)
            queued = len(self._pending)
        self.logger.info(
            f"Scheduler stopped: cancelled={counts['cancelled']}, forced={counts['forced']}, "
            f"still_queued={queued}"
        )
        self.event_bus.publish(Stopped(
            cancelled_count=counts["cancelled"],
            forced_count=counts["forced"],
            queued_count=queued,
        ))
        self._done_event.set()

    def _log_summary(self, summary: ProcessingSummary) -> None:
        self.logger.info("All videos processed")
        if summary.file_count > 0:
            self.logger.info(
                f"Processing summary: files={summary.file_count}, "
                f"total_time={summary.total_duration_seconds:.1f}s, "
                f"avg_time={summary.average_duration_seconds:.1f}s, "
                f"input={summary.total_input_bytes}B, output={summary.total_output_bytes}B, "
                f"ratio={summary.compression_ratio * 100:.1f}%, "
                f"saved={summary.space_saved_bytes}B, peak_memory={summary.peak_memory_bytes}B"
            )
        if summary.failures:
            self.logger.error(f"{len(summary.failures)} videos failed to process:")
            for failure in summary.failures:
                self.logger.error(f"  - {failure.path.name}: {failure.message} (stage={failure.stage})")
