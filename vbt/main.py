import threading
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from vbt.config.loader import load_config
from vbt.config.models import AppConfig, GeneralConfig
from vbt.domain.errors import LifecycleError
from vbt.domain.models import RunState
from vbt.infrastructure.capability_probe import CapabilityProbe
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.ffmpeg import FFmpegRunner
from vbt.infrastructure.file_scanner import FileScanner
from vbt.infrastructure.housekeeping import HousekeepingService
from vbt.infrastructure.logging import setup_logging
from vbt.infrastructure.run_history import RunHistoryWriter
from vbt.pipeline.scheduler import Scheduler
from vbt.pipeline.simulated_runner import SimulatedRunner
from vbt.ui.console import ConsolePrinter
from vbt.ui.keyboard import KeyboardListener, PauseToggleRequested, StopRequested, ThreadControlEvent
from vbt.ui.report import render_summary

DEFAULT_CONFIG_PATH = Path("conf/vbt.yaml")

app = typer.Typer(help="VBT (Video Batch Transcoder) - concurrent batch transcoding")


def _resolve_config(config_path: Optional[Path]) -> AppConfig:
    if config_path is not None:
        return load_config(config_path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return AppConfig()


def _log_dir(output_dir: Optional[Path], input_paths: List[Path], demo: bool) -> Path:
    if output_dir:
        return output_dir
    if demo:
        return Path("demo_out")
    first = input_paths[0]
    return first if first.is_dir() else first.parent


def _wire_keyboard(bus: EventBus, scheduler: Scheduler, stop_requested: threading.Event) -> None:
    def on_pause_toggle(_event: PauseToggleRequested):
        try:
            if scheduler.run_state == RunState.PAUSED:
                scheduler.resume()
            else:
                scheduler.pause()
        except LifecycleError:
            pass

    def on_thread_control(event: ThreadControlEvent):
        scheduler.set_concurrency_limit(max(1, scheduler.concurrency_limit + event.change))

    # stop() waits for jobs, so it runs on the main thread, not in a subscriber
    bus.subscribe(StopRequested, lambda _event: stop_requested.set())
    bus.subscribe(PauseToggleRequested, on_pause_toggle)
    bus.subscribe(ThreadControlEvent, on_thread_control)


@app.command()
def transcode(
    paths: Optional[List[Path]] = typer.Argument(None, help="Video files or directories to transcode"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1, help="Override number of concurrent jobs"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory for transcoded files"),
    demo: bool = typer.Option(False, "--demo", help="Simulate transcoding (no ffmpeg, no output files)"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for --demo"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (default: <output>/transcode.log)"),
    history: Optional[Path] = typer.Option(None, "--history", help="Append one JSON line per finished job to this file"),
    keyboard: bool = typer.Option(True, "--keyboard/--no-keyboard", help="Listen for P (pause) and S (stop) keys"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Transcode a batch of videos with bounded concurrency."""
    try:
        try:
            config = _resolve_config(config_path)
        except FileNotFoundError as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        # Apply CLI overrides
        if threads is not None:
            config.general = GeneralConfig.model_validate({**config.general.model_dump(), "threads": threads})
        if log_path is not None: config.general.log_path = str(log_path)
        if history is not None: config.general.history_path = str(history)
        if debug: config.general.debug = True

        input_paths = list(paths) if paths else [Path(p) for p in config.input_paths]
        if not input_paths:
            typer.secho("Error: no input paths given (argument or input_paths in config)", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        target_dir = output_dir or (Path(config.output_dir) if config.output_dir else None)
        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(
            _log_dir(target_dir, input_paths, demo), debug=config.general.debug, log_path=log_path_value
        )
        logger.info(f"VBT started: inputs={[str(p) for p in input_paths]}, demo={demo}")
        logger.info(
            f"Config: threads={config.general.threads}, codec={config.encoder.video_codec}, "
            f"crf={config.encoder.crf}, hw_accel={config.encoder.use_hw_accel}, debug={config.general.debug}"
        )

        console = Console()
        bus = EventBus()
        ConsolePrinter(bus, console)
        if config.general.history_path:
            RunHistoryWriter(Path(config.general.history_path), bus)

        if demo:
            runner = SimulatedRunner(seed=seed)
        else:
            housekeeper = HousekeepingService()
            for path in input_paths:
                if path.is_dir():
                    housekeeper.cleanup_temp_files(path)
            runner = FFmpegRunner(config.encoder)

        scanner = FileScanner(
            extensions=config.general.extensions,
            min_size_bytes=config.general.min_size_bytes,
            output_suffix=config.encoder.output_suffix,
        )
        scheduler = Scheduler(config=config, event_bus=bus, runner=runner, output_dir=target_dir)

        accepted, rejected = scheduler.add_videos(scanner.expand(input_paths))
        for error in rejected:
            console.print(f"[red]Skipped:[/red] {error}")
        if not accepted:
            console.print("No files to process. Check input paths and filters (extensions, min size).")

        stop_requested = threading.Event()
        _wire_keyboard(bus, scheduler, stop_requested)
        listener = KeyboardListener(bus) if keyboard else None

        interrupted = False
        if listener:
            listener.start()
        scheduler.start()
        try:
            while not scheduler.wait(0.2):
                if stop_requested.is_set():
                    scheduler.stop()
                    break
        except KeyboardInterrupt:
            interrupted = True
            console.print("[yellow]Ctrl+C - stopping active jobs...[/yellow]")
            logger.info("Ctrl+C detected - stopping scheduler")
            scheduler.stop()
        finally:
            if listener:
                listener.stop()

        summary = scheduler.summary
        if summary is not None:
            render_summary(console, summary)

        if interrupted:
            raise typer.Exit(code=130)
        if rejected or (summary is not None and summary.failed_count > 0):
            raise typer.Exit(code=1)

    except typer.Exit:
        raise

    except Exception as e:
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def probe(timeout: float = typer.Option(5.0, "--timeout", help="Seconds to wait for detection")):
    """Print the hardware acceleration tags detected on this host."""
    capability_probe = CapabilityProbe(timeout_s=timeout)
    capability_probe.start()
    tags = capability_probe.wait(timeout + 1.0)
    if tags:
        typer.echo(", ".join(tags))
    else:
        typer.echo("No hardware acceleration detected")


if __name__ == "__main__":
    app()
