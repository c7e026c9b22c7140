import threading
from typing import Dict, Optional

from rich.console import Console

from vbt.domain.events import (
    ConcurrencyReduced,
    JobCompleted,
    JobProgress,
    JobStarted,
    Paused,
    Resumed,
    Started,
    Stopped,
    VideoFailed,
)
from vbt.domain.models import FailureKind
from vbt.infrastructure.event_bus import EventBus
from vbt.ui.report import format_duration, format_size


class ConsolePrinter:
    """Prints scheduler events as one-line status messages.

    Progress is reported in ``progress_step`` increments per job so a long
    batch does not flood the terminal.
    """

    def __init__(self, event_bus: EventBus, console: Optional[Console] = None, progress_step: float = 0.25):
        self.console = console or Console()
        self.progress_step = progress_step
        self._lock = threading.Lock()
        self._last_progress: Dict[str, float] = {}

        event_bus.subscribe(Started, self.on_started)
        event_bus.subscribe(JobStarted, self.on_job_started)
        event_bus.subscribe(JobProgress, self.on_job_progress)
        event_bus.subscribe(JobCompleted, self.on_job_completed)
        event_bus.subscribe(VideoFailed, self.on_job_failed)
        event_bus.subscribe(Paused, self.on_paused)
        event_bus.subscribe(Resumed, self.on_resumed)
        event_bus.subscribe(Stopped, self.on_stopped)
        event_bus.subscribe(ConcurrencyReduced, self.on_concurrency_reduced)

    def on_started(self, event: Started):
        self.console.print(
            f"[bold]Starting[/bold] {event.queued_count} videos, "
            f"{event.concurrency_limit} at a time"
        )

    def on_job_started(self, event: JobStarted):
        with self._lock:
            self._last_progress[event.job_id] = 0.0
        self.console.print(
            f"[cyan]▶[/cyan] {event.path.name} "
            f"[dim](running {event.concurrent_count}, queued {event.queued_count})[/dim]"
        )

    def on_job_progress(self, event: JobProgress):
        with self._lock:
            last = self._last_progress.get(event.job_id, 0.0)
            if event.fraction < 1.0 and event.fraction - last < self.progress_step:
                return
            self._last_progress[event.job_id] = event.fraction
        if event.fraction < 1.0:
            self.console.print(f"  [dim]{event.path.name}: {event.fraction * 100:.0f}%[/dim]")

    def on_job_completed(self, event: JobCompleted):
        record = event.record
        with self._lock:
            self._last_progress.pop(event.job_id, None)
        self.console.print(
            f"[green]✓[/green] {event.path.name} "
            f"{format_size(record.input_size or 0)} → {format_size(record.output_size or 0)} "
            f"({record.compression_ratio * 100:.1f}%) in {format_duration(record.duration_seconds or 0.0)}"
        )

    def on_job_failed(self, event: VideoFailed):
        with self._lock:
            self._last_progress.pop(event.job_id, None)
        if event.kind == FailureKind.ERROR:
            self.console.print(f"[red]✗[/red] {event.path.name}: {event.reason} [dim](stage {event.stage})[/dim]")
        else:
            self.console.print(f"[yellow]■[/yellow] {event.path.name}: {event.reason} [dim]({event.kind.value})[/dim]")

    def on_paused(self, event: Paused):
        self.console.print(f"[yellow]Paused[/yellow] ({event.in_flight_count} jobs held, press P to resume)")

    def on_resumed(self, event: Resumed):
        self.console.print(f"[green]Resumed[/green] ({event.queued_count} queued)")

    def on_stopped(self, event: Stopped):
        self.console.print(
            f"[yellow]Stopped[/yellow]: {event.cancelled_count} cancelled, "
            f"{event.forced_count} force-stopped, {event.queued_count} left in queue"
        )

    def on_concurrency_reduced(self, event: ConcurrencyReduced):
        self.console.print(
            f"[yellow]High memory usage ({format_size(event.memory_bytes)})[/yellow]: "
            f"concurrent jobs {event.old_limit} → {event.new_limit}"
        )
