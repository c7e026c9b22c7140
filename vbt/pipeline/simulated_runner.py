import logging
import random
import threading
import time
from typing import Optional, Tuple

from vbt.domain.errors import JobCancelledError, JobExecutionError
from vbt.domain.models import JobRequest, RunResult
from vbt.pipeline.job_control import JobHandle
from vbt.pipeline.runner import JobRunner, ProgressCallback

DEMO_FAILURES = [
    ("probe", "File is corrupted (ffprobe failed to read)"),
    ("encode", "ffmpeg exited with code 1"),
    ("encode", "Hardware is lacking required capabilities"),
]


class SimulatedRunner(JobRunner):
    """Demo runner: pretends to transcode without touching the file.

    Processing time follows the file size and a configured throughput with
    some jitter. A seeded fraction of jobs fails part-way through, the rest
    "shrink" by a random output ratio. Pause and cancel are honoured between
    ticks.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        throughput_mb_s: float = 80.0,
        jitter_pct: float = 0.2,
        fail_rate: float = 0.1,
        output_ratio: Tuple[float, float] = (0.3, 0.8),
        tick_s: float = 0.1,
        min_duration_s: float = 0.2,
        max_duration_s: float = 8.0,
    ):
        self.throughput_mb_s = throughput_mb_s
        self.jitter_pct = jitter_pct
        self.fail_rate = fail_rate
        self.output_ratio = output_ratio
        self.tick_s = tick_s
        self.min_duration_s = min_duration_s
        self.max_duration_s = max_duration_s
        self.logger = logging.getLogger(__name__)
        self._rng = random.Random(seed)
        # random.Random is shared by worker threads
        self._rng_lock = threading.Lock()

    def _plan(self, size_bytes: int):
        with self._rng_lock:
            size_mb = size_bytes / (1024 * 1024)
            base = size_mb / self.throughput_mb_s
            factor = self._rng.uniform(1.0 - self.jitter_pct, 1.0 + self.jitter_pct)
            duration_s = min(self.max_duration_s, max(self.min_duration_s, base * factor))
            failure = None
            fail_at = 1.0
            if self._rng.random() < self.fail_rate:
                failure = self._rng.choice(DEMO_FAILURES)
                fail_at = 0.0 if failure[0] == "probe" else self._rng.uniform(0.1, 0.9)
            ratio = self._rng.uniform(*self.output_ratio)
        return duration_s, failure, fail_at, ratio

    def run(self, request: JobRequest, handle: JobHandle, on_progress: ProgressCallback) -> RunResult:
        try:
            size_bytes = request.source_path.stat().st_size
        except OSError as e:
            raise JobExecutionError(f"Cannot stat source: {e}", stage="probe")

        duration_s, failure, fail_at, ratio = self._plan(size_bytes)
        self.logger.debug(
            f"SIMULATE: {request.source_path.name} duration={duration_s:.2f}s "
            f"outcome={failure[1] if failure else 'success'}"
        )

        handle.enter_stage("probe")
        handle.check_cancelled()
        if failure and failure[0] == "probe":
            raise JobExecutionError(failure[1], stage="probe")

        handle.enter_stage("encode")
        target = duration_s * fail_at
        elapsed = 0.0
        while elapsed < target:
            if not handle.wait_if_paused():
                raise JobCancelledError(stage=handle.stage)
            handle.check_cancelled()
            time.sleep(self.tick_s)
            elapsed += self.tick_s
            on_progress(min(1.0, elapsed / duration_s))

        if failure:
            raise JobExecutionError(failure[1], stage=failure[0])

        handle.enter_stage("finalize")
        handle.check_cancelled()
        on_progress(1.0)
        return RunResult(input_size=size_bytes, output_size=int(size_bytes * ratio))
