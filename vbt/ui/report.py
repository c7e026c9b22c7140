from rich.console import Console
from rich.table import Table
from rich.box import ROUNDED

from vbt.domain.models import FailureKind, ProcessingSummary


def format_size(size: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if abs(size) < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}TB"


def format_duration(seconds: float) -> str:
    """Formats seconds as ``1h 2m 3s``, dropping leading zero units."""
    total = int(round(max(0.0, seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def build_summary_table(summary: ProcessingSummary) -> Table:
    table = Table(title="Processing summary", box=ROUNDED, show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Files processed", str(summary.file_count))
    table.add_row("Failed", str(summary.failed_count))
    if summary.cancelled_count:
        table.add_row("Cancelled", str(summary.cancelled_count))
    table.add_row("Total time", format_duration(summary.total_duration_seconds))
    table.add_row("Average per file", format_duration(summary.average_duration_seconds))
    table.add_row("Input size", format_size(summary.total_input_bytes))
    table.add_row("Output size", format_size(summary.total_output_bytes))
    table.add_row("Compression ratio", f"{summary.compression_ratio * 100:.1f}%")
    table.add_row("Space saved", format_size(summary.space_saved_bytes))
    table.add_row("Peak memory", format_size(summary.peak_memory_bytes))
    return table


def build_failures_table(summary: ProcessingSummary) -> Table:
    table = Table(title="Failed videos", box=ROUNDED)
    table.add_column("File", overflow="fold")
    table.add_column("Stage")
    table.add_column("Reason", overflow="fold")
    for failure in summary.failures:
        style = "yellow" if failure.kind != FailureKind.ERROR else "red"
        table.add_row(failure.path.name, failure.stage, failure.message, style=style)
    return table


def render_summary(console: Console, summary: ProcessingSummary) -> None:
    console.print(build_summary_table(summary))
    if summary.failures:
        console.print(build_failures_table(summary))
