import threading
from unittest.mock import MagicMock, patch

import psutil

from vbt.infrastructure.resource_monitor import ResourceMonitor, process_rss_bytes


def test_process_rss_bytes_uses_psutil():
    with patch("vbt.infrastructure.resource_monitor.psutil.Process") as mock_process:
        mock_process.return_value.memory_info.return_value.rss = 12345
        assert process_rss_bytes() == 12345


def test_check_below_threshold_only_samples():
    on_pressure = MagicMock()
    on_sample = MagicMock()
    reclaim = MagicMock()
    monitor = ResourceMonitor(
        on_pressure=on_pressure,
        threshold_bytes=1000,
        on_sample=on_sample,
        sampler=lambda: 500,
        reclaim=reclaim,
    )

    assert monitor.check() == 500
    on_sample.assert_called_once_with(500)
    reclaim.assert_not_called()
    on_pressure.assert_not_called()


def test_check_above_threshold_reclaims_then_signals():
    calls = []
    monitor = ResourceMonitor(
        on_pressure=lambda used: calls.append(("pressure", used)),
        threshold_bytes=1000,
        sampler=lambda: 2000,
        reclaim=lambda: calls.append(("reclaim",)),
    )

    monitor.check()

    assert calls == [("reclaim",), ("pressure", 2000)]


def test_sampling_failure_is_not_raised():
    on_pressure = MagicMock()

    def broken():
        raise psutil.AccessDenied()

    monitor = ResourceMonitor(on_pressure=on_pressure, threshold_bytes=1, sampler=broken)

    assert monitor.check() is None
    on_pressure.assert_not_called()


def test_background_thread_samples_until_stopped():
    sampled = threading.Event()
    monitor = ResourceMonitor(
        on_pressure=MagicMock(),
        threshold_bytes=10 ** 12,
        interval_s=0.01,
        on_sample=lambda used: sampled.set(),
        sampler=lambda: 1,
    )

    monitor.start()
    assert monitor.running
    assert sampled.wait(2.0)
    monitor.stop()

    assert not monitor.running
