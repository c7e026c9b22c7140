import threading
from pathlib import Path
from typing import List

from vbt.domain.models import FailureEntry, FailureReason, MetricsSnapshot, ProcessingSummary


class MetricsAggregator:
    """Accumulates throughput, timing and size statistics for one batch.

    Job results are recorded by the dispatch loop and memory samples by the
    resource monitor; both go through ``_lock`` and readers only ever get
    copies.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._processed = 0
        self._failed = 0
        self._cancelled = 0
        self._total_input = 0
        self._total_output = 0
        self._mean_seconds = 0.0
        self._peak_memory = 0
        self._current_memory = 0
        self._failures: List[FailureEntry] = []

    def record_success(self, input_size: int, output_size: int, duration_seconds: float) -> None:
        with self._lock:
            self._processed += 1
            self._total_input += input_size or 0
            self._total_output += output_size or 0
            # incremental mean, no pass over history
            self._mean_seconds += (duration_seconds - self._mean_seconds) / self._processed

    def record_failure(self, path: Path, failure: FailureReason) -> None:
        with self._lock:
            if failure.is_cancellation:
                self._cancelled += 1
            else:
                self._failed += 1
            self._failures.append(
                FailureEntry(path=path, message=failure.message, stage=failure.stage, kind=failure.kind)
            )

    def record_memory(self, used_bytes: int) -> None:
        with self._lock:
            self._current_memory = used_bytes
            if used_bytes > self._peak_memory:
                self._peak_memory = used_bytes

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                processed_count=self._processed,
                failed_count=self._failed,
                cancelled_count=self._cancelled,
                total_input_bytes=self._total_input,
                total_output_bytes=self._total_output,
                average_processing_seconds=self._mean_seconds,
                peak_memory_bytes=self._peak_memory,
                current_memory_bytes=self._current_memory,
            )

    def summary(self, total_duration_seconds: float) -> ProcessingSummary:
        with self._lock:
            ratio = self._total_output / self._total_input if self._total_input > 0 else 0.0
            return ProcessingSummary(
                file_count=self._processed,
                failed_count=self._failed,
                cancelled_count=self._cancelled,
                total_duration_seconds=total_duration_seconds,
                average_duration_seconds=self._mean_seconds,
                total_input_bytes=self._total_input,
                total_output_bytes=self._total_output,
                compression_ratio=ratio,
                space_saved_bytes=self._total_input - self._total_output,
                peak_memory_bytes=self._peak_memory,
                failures=list(self._failures),
            )

    def reset(self) -> None:
        with self._lock:
            self._processed = 0
            self._failed = 0
            self._cancelled = 0
            self._total_input = 0
            self._total_output = 0
            self._mean_seconds = 0.0
            self._peak_memory = 0
            self._current_memory = 0
            self._failures = []
