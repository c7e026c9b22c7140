from pathlib import Path

import pytest

from vbt.domain.models import FailureKind, FailureReason
from vbt.pipeline.metrics import MetricsAggregator


def test_summary_totals_and_ratio():
    metrics = MetricsAggregator()
    metrics.record_success(100, 50, 1.0)
    metrics.record_success(200, 100, 2.0)
    metrics.record_success(300, 120, 3.0)

    summary = metrics.summary(total_duration_seconds=6.5)

    assert summary.file_count == 3
    assert summary.total_input_bytes == 600
    assert summary.total_output_bytes == 270
    assert summary.compression_ratio == pytest.approx(0.45)
    assert summary.space_saved_bytes == 330
    assert summary.average_duration_seconds == pytest.approx(2.0)
    assert summary.total_duration_seconds == 6.5


def test_zero_jobs_gives_zero_ratio():
    summary = MetricsAggregator().summary(0.0)

    assert summary.file_count == 0
    assert summary.compression_ratio == 0.0
    assert summary.space_saved_bytes == 0
    assert summary.failures == []


def test_failures_and_cancellations_are_counted_apart():
    metrics = MetricsAggregator()
    metrics.record_failure(Path("a.mp4"), FailureReason(message="bad", stage="encode"))
    metrics.record_failure(Path("b.mp4"), FailureReason(message="stopped by caller", kind=FailureKind.CANCELLED))
    metrics.record_failure(Path("c.mp4"), FailureReason(message="stopped by caller", kind=FailureKind.FORCED_STOP))

    snapshot = metrics.snapshot()
    summary = metrics.summary(1.0)

    assert snapshot.failed_count == 1
    assert snapshot.cancelled_count == 2
    assert [f.path.name for f in summary.failures] == ["a.mp4", "b.mp4", "c.mp4"]
    assert summary.failures[0].stage == "encode"
    assert summary.failures[1].kind == FailureKind.CANCELLED


def test_memory_tracks_current_and_peak():
    metrics = MetricsAggregator()
    metrics.record_memory(500)
    metrics.record_memory(900)
    metrics.record_memory(300)

    snapshot = metrics.snapshot()
    assert snapshot.current_memory_bytes == 300
    assert snapshot.peak_memory_bytes == 900
    assert metrics.summary(1.0).peak_memory_bytes == 900


def test_snapshot_is_a_copy():
    metrics = MetricsAggregator()
    before = metrics.snapshot()
    metrics.record_success(10, 5, 0.1)

    assert before.processed_count == 0
    assert metrics.snapshot().processed_count == 1


def test_reset_clears_everything():
    metrics = MetricsAggregator()
    metrics.record_success(10, 5, 0.1)
    metrics.record_failure(Path("a.mp4"), FailureReason(message="bad"))
    metrics.record_memory(100)

    metrics.reset()

    assert metrics.snapshot().model_dump() == MetricsAggregator().snapshot().model_dump()
    assert metrics.summary(0.0).failures == []
