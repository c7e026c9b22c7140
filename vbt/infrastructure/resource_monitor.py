import gc
import logging
import threading
import time
from typing import Callable, Optional

import psutil


def process_rss_bytes() -> int:
    """Resident memory of the current process."""
    return int(psutil.Process().memory_info().rss)


class ResourceMonitor:
    """Samples process memory in a background thread and signals pressure.

    Every sample goes to ``on_sample``. When usage is above
    ``threshold_bytes`` a reclamation pass (``reclaim``) runs first and then
    ``on_pressure`` is called with the sampled value; the callback decides
    what to give up.
    """

    def __init__(
        self,
        on_pressure: Callable[[int], None],
        threshold_bytes: int,
        interval_s: float = 5.0,
        on_sample: Optional[Callable[[int], None]] = None,
        sampler: Callable[[], int] = process_rss_bytes,
        reclaim: Optional[Callable[[], object]] = gc.collect,
    ):
        self.on_pressure = on_pressure
        self.on_sample = on_sample
        self.threshold_bytes = threshold_bytes
        self.interval_s = interval_s
        self.sampler = sampler
        self.reclaim = reclaim
        self.logger = logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check(self) -> Optional[int]:
        """Takes one sample. Returns the sampled bytes, or None if sampling failed."""
        try:
            used = self.sampler()
        except (psutil.Error, OSError) as e:
            self.logger.debug(f"Resource monitor: failed to sample memory: {e}")
            return None

        if self.on_sample:
            self.on_sample(used)

        if used > self.threshold_bytes:
            self.logger.warning(
                f"MEMORY_PRESSURE: {used / (1024 * 1024):.1f}MB used "
                f"(threshold {self.threshold_bytes / (1024 * 1024):.1f}MB)"
            )
            if self.reclaim:
                self.reclaim()
            self.on_pressure(used)
        return used

    def _poll(self):
        """Samples on a fixed interval with compensated sleep."""
        next_tick = time.monotonic()

        while not self._stop_event.is_set():
            self.check()

            next_tick += self.interval_s
            sleep_time = next_tick - time.monotonic()
            if sleep_time > 0:
                self._stop_event.wait(sleep_time)
            else:
                next_tick = time.monotonic()

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self):
        """Starts the monitoring thread."""
        if self._thread is not None:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll, name="vbt-resource-monitor", daemon=True)
        self._thread.start()
        self.logger.info(
            f"Resource monitor started (interval={self.interval_s}s, "
            f"threshold={self.threshold_bytes / (1024 * 1024):.0f}MB)"
        )

    def stop(self):
        """Stops the monitoring thread."""
        self._stop_event.set()
        if self._thread:
            if self._thread is not threading.current_thread():
                self._thread.join(timeout=1.0)
            self._thread = None
            self.logger.info("Resource monitor stopped")
