from abc import ABC, abstractmethod
from typing import Callable

from vbt.domain.models import JobRequest, RunResult
from vbt.pipeline.job_control import JobHandle

ProgressCallback = Callable[[float], None]


class JobRunner(ABC):
    """Performs the actual transcode of one file.

    ``run`` blocks for the duration of the job and is called on a worker
    thread. It reports fractional progress through ``on_progress``, polls
    ``handle`` for pause/cancel requests, and either returns a RunResult or
    raises ``JobExecutionError`` (``JobCancelledError`` when it stopped on
    request). Any other exception is treated as a crash of that job only.
    """

    @abstractmethod
    def run(self, request: JobRequest, handle: JobHandle, on_progress: ProgressCallback) -> RunResult:
        raise NotImplementedError
