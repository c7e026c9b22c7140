"""Per-job control surface shared between the scheduler and a runner.

The scheduler only ever talks to in-flight jobs through ``JobControl``:
pause, resume, cancel and abort. Every method has a no-op default so a job
type that cannot do one of them still satisfies the interface.

``JobHandle`` is the implementation handed to runners. Cooperative requests
are recorded as events the runner polls (``wait_if_paused``,
``check_cancelled``); a runner that spawns an external process binds it with
``bind_process`` so pause/resume/abort also reach the process itself.
"""

import logging
import signal
import subprocess
import threading
from pathlib import Path
from typing import Optional

from vbt.domain.errors import JobCancelledError
from vbt.domain.models import UNKNOWN_STAGE

_SIGSTOP = getattr(signal, "SIGSTOP", None)
_SIGCONT = getattr(signal, "SIGCONT", None)


class JobControl:
    """Capability interface for an in-flight job."""

    def pause(self) -> None:
        return None

    def resume(self) -> None:
        return None

    def cancel(self) -> None:
        return None

    def abort(self) -> None:
        return None


class JobHandle(JobControl):
    def __init__(self, job_id: str, source_path: Path):
        self.job_id = job_id
        self.source_path = Path(source_path)
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._run_gate = threading.Event()
        self._run_gate.set()
        self._aborted = False
        self._process: Optional[subprocess.Popen] = None
        self._stage = UNKNOWN_STAGE

    # -- state seen by the scheduler -------------------------------------

    @property
    def stage(self) -> str:
        return self._stage

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def paused(self) -> bool:
        return not self._run_gate.is_set()

    # -- JobControl ------------------------------------------------------

    def pause(self) -> None:
        with self._lock:
            if self.cancelled:
                return
            self._run_gate.clear()
            process = self._process
        if process is not None and _SIGSTOP is not None:
            self._signal(process, _SIGSTOP)

    def resume(self) -> None:
        with self._lock:
            was_paused = not self._run_gate.is_set()
            self._run_gate.set()
            process = self._process
        if was_paused and process is not None and _SIGCONT is not None:
            self._signal(process, _SIGCONT)

    def cancel(self) -> None:
        # A paused job has to wake up to notice the cancel request
        self._cancel_event.set()
        self.resume()

    def abort(self) -> None:
        with self._lock:
            self._aborted = True
            process = self._process
        self.cancel()
        if process is not None:
            self._kill(process)

    # -- runner side -----------------------------------------------------

    def enter_stage(self, stage: str) -> None:
        self._stage = stage

    def bind_process(self, process: subprocess.Popen) -> None:
        """Attach the external process so pause/resume/abort reach it."""
        with self._lock:
            self._process = process
            aborted = self._aborted
            paused = not self._run_gate.is_set()
        if aborted:
            self._kill(process)
        elif paused and _SIGSTOP is not None:
            self._signal(process, _SIGSTOP)

    def release_process(self) -> None:
        with self._lock:
            self._process = None

    def wait_if_paused(self, poll_s: float = 0.1) -> bool:
        """Block while paused. Returns False if the job was cancelled."""
        while not self._run_gate.wait(poll_s):
            if self.cancelled:
                return False
        return not self.cancelled

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise JobCancelledError("cancelled", stage=self._stage)

    def _signal(self, process: subprocess.Popen, sig: int) -> None:
        try:
            process.send_signal(sig)
        except OSError as e:
            self.logger.debug(f"Signal {sig} to {self.source_path.name} failed: {e}")

    def _kill(self, process: subprocess.Popen) -> None:
        self.logger.info(f"JOB_ABORT: {self.source_path.name} (killing pid {process.pid})")
        if _SIGCONT is not None:
            self._signal(process, _SIGCONT)
        try:
            process.kill()
        except OSError as e:
            self.logger.debug(f"Kill of {self.source_path.name} failed: {e}")
