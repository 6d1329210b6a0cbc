"""Console reporter using Rich library for formatted CLI output.

Shows:
- A header with the file being uploaded
- The chunk plan returned by the coordinator
- One line per part (or a running count in quiet mode)
- A final summary table
"""

from rich import box
from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from upload_coordinator.models import UploadResult
from upload_coordinator.reporters.base import Reporter


def format_bytes(size: int) -> str:
    """Human-readable byte count (binary units)."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"


class ConsoleReporter(Reporter):
    """Rich-based console reporter for CLI output.

    Args:
        quiet: If True, suppress per-part output (only show summary)
    """

    def __init__(self, quiet: bool = False):
        """Initialize the console reporter.

        Args:
            quiet: Suppress per-part output if True
        """
        # Use legacy_windows=True for ASCII-safe output on Windows consoles
        self.console = Console(legacy_windows=True)
        self.quiet = quiet
        self._total_chunks = 0

    def on_upload_start(self, file_name: str, file_size: int, strategy: str) -> None:
        """Display a header with the file name and size."""
        self.console.print()
        self.console.print(
            Rule(
                f"[bold cyan]Uploading: {file_name} ({format_bytes(file_size)}, {strategy})[/bold cyan]",
                style="cyan",
                characters="-",
            )
        )

    def on_session_created(self, upload_id: str, chunk_size: int, total_chunks: int) -> None:
        """Display the chunk plan."""
        self._total_chunks = total_chunks
        self.console.print(
            f"Session [bold]{upload_id}[/bold]: {total_chunks} parts of {format_bytes(chunk_size)}"
        )

    def on_part_complete(self, index: int, size: int, skipped: bool) -> None:
        """Display a per-part status line."""
        if self.quiet:
            return

        if skipped:
            status_text = "[dim][SKIP][/dim]"
        else:
            status_text = "[green][ OK ][/green]"

        self.console.print(
            f"  {status_text} part {index + 1}/{self._total_chunks} ({format_bytes(size)})"
        )

    def on_upload_complete(self, result: UploadResult) -> None:
        """Display a summary table for the upload."""
        self.console.print()

        table = Table(
            title="",
            show_header=False,
            border_style="dim",
            box=box.ASCII,
        )
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value")

        if result.success:
            status = "[bold green]COMMITTED[/bold green]"
        else:
            status = "[bold red]FAILED[/bold red]"

        table.add_row("Status", status)
        table.add_row("Upload ID", result.upload_id or "-")
        table.add_row("Parts uploaded", str(len(result.uploaded_parts)))
        table.add_row("Parts skipped", str(len(result.skipped_parts)))
        table.add_row("Duration", f"{result.duration_seconds:.1f}s")
        if result.file_id:
            table.add_row("File ID", result.file_id)
        if result.location:
            table.add_row("Location", result.location)
        if result.error_message:
            table.add_row("Error", f"[red]{result.error_message}[/red]")

        self.console.print(table)
        self.console.print()
