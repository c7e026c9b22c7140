import threading
import time

import pytest
import yaml

from vbt.config.models import AppConfig
from vbt.domain.errors import JobCancelledError, JobExecutionError
from vbt.domain.events import Event
from vbt.domain.models import RunResult, RunState
from vbt.infrastructure.capability_probe import CapabilityProbe
from vbt.infrastructure.event_bus import EventBus
from vbt.pipeline.runner import JobRunner
from vbt.pipeline.scheduler import Scheduler

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a fast AppConfig for scheduler tests (no memory monitor)."""
    return AppConfig(
        general={
            "threads": 2,
            "poll_interval_s": 0.05,
            "stop_grace_s": 1.0,
            "extensions": [".mp4", ".mov"],
        },
        monitor={"enabled": False},
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vbt.yaml"

    content = {
        'general': {
            'threads': 3,
            'extensions': ['mp4', 'MOV'],
            'min_size_bytes': 10,
            'debug': True,
        },
        'encoder': {
            'video_codec': 'libx265',
            'crf': 28,
            'container': 'mkv',
        },
        'monitor': {
            'memory_threshold_mb': 512,
        },
        'input_paths': '/videos/a, /videos/b',
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def recorded_events(event_bus):
    """Subscribes to every event and returns the list they are appended to."""
    events = []
    event_bus.subscribe(Event, events.append)
    return events

# ============================================================================
# Runner / Scheduler Fixtures
# ============================================================================

class StaticProbe(CapabilityProbe):
    """CapabilityProbe that reports fixed tags without touching the host."""

    def __init__(self, tags=()):
        super().__init__()
        self._static = set(tags)

    def detect(self):
        return set(self._static)


class ScriptedRunner(JobRunner):
    """JobRunner whose behaviour is scripted per file name.

    - ``hold``: every job blocks on its gate until ``release()``;
    - ``errors[name]``: raised instead of returning;
    - ``sizes[name]``: (input_size, output_size) of the RunResult;
    - ``ignore_cancel``: names that keep running after cancel (until aborted);
    - ``stuck``: names that never return until ``release_stuck`` is set.
    """

    def __init__(self):
        self.lock = threading.Condition()
        self.started = []
        self.requests = []
        self.active = 0
        self.max_active = 0
        self.hold = False
        self.gates = {}
        self.errors = {}
        self.sizes = {}
        self.ignore_cancel = set()
        self.stuck = set()
        self.release_stuck = threading.Event()

    def gate(self, name):
        with self.lock:
            return self.gates.setdefault(name, threading.Event())

    def release(self, name=None):
        if name is not None:
            self.gate(name).set()
            return
        with self.lock:
            self.hold = False
            gates = list(self.gates.values())
        for gate in gates:
            gate.set()

    def wait_started(self, count, timeout=5.0):
        deadline = time.monotonic() + timeout
        with self.lock:
            while len(self.started) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self.lock.wait(remaining)
            return True

    def run(self, request, handle, on_progress):
        name = request.source_path.name
        with self.lock:
            self.started.append(name)
            self.requests.append(request)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.lock.notify_all()
        try:
            handle.enter_stage("encode")
            if name in self.stuck:
                self.release_stuck.wait(30)
                raise JobExecutionError("stuck job released", stage="encode")

            on_progress(0.5)
            if self.hold:
                gate = self.gate(name)
                while not gate.wait(0.01):
                    if handle.aborted:
                        raise JobExecutionError("killed", stage="encode")
                    if handle.cancelled and name not in self.ignore_cancel:
                        raise JobCancelledError(stage=handle.stage)

            if name in self.errors:
                raise self.errors[name]
            input_size, output_size = self.sizes.get(name, (100, 50))
            return RunResult(input_size=input_size, output_size=output_size)
        finally:
            with self.lock:
                self.active -= 1
                self.lock.notify_all()


@pytest.fixture
def scripted_runner():
    runner = ScriptedRunner()
    yield runner
    runner.release_stuck.set()
    runner.release()

@pytest.fixture
def make_scheduler(sample_config, event_bus, scripted_runner):
    """Factory for Schedulers wired to the scripted runner; stops them on teardown."""
    created = []

    def _make(config=None, runner=None, tags=(), **kwargs):
        scheduler = Scheduler(
            config=config or sample_config,
            event_bus=event_bus,
            runner=runner or scripted_runner,
            capability_probe=StaticProbe(tags),
            **kwargs,
        )
        created.append(scheduler)
        return scheduler

    yield _make

    scripted_runner.release()
    for scheduler in created:
        if scheduler.run_state in (RunState.RUNNING, RunState.PAUSED):
            scheduler.stop(grace_seconds=0.5)

@pytest.fixture
def wait_for():
    """Polls ``predicate`` until it is true or ``timeout`` expires."""
    def _wait(predicate, timeout=5.0, interval=0.01):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return _wait

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir

@pytest.fixture
def dummy_video_files(test_input_dir):
    """Creates five dummy video files named video0.mp4 .. video4.mp4."""
    files = []
    for i in range(5):
        f = test_input_dir / f"video{i}.mp4"
        f.write_bytes(b"dummy video content " * 100)  # ~2KB
        files.append(f)
    return files

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that wait on real timeouts"
    )
