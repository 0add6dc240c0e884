import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table

from compresso.domain.models import BatchSummary, JobStatus, Preset
from compresso.ui.state import UIState


def format_size(size: int) -> str:
    """Format size in bytes to human readable"""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024.0
        if value < 1024.0:
            return f"{value:.2f} {unit}"
    return f"{value / 1024.0:.2f} TB"


def format_duration(seconds: float) -> str:
    """Format seconds as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""
    if seconds is None or seconds < 0:
        return "0s"
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def estimate_output_size_range(original_size: int, quality: int, preset: Preset) -> Tuple[int, int]:
    """Rough (min, max) output size. Content varies a lot, so the range is wide."""
    quality = max(0, min(100, quality))
    base_ratio = 0.02 + (100 - quality) / 100.0 * 0.05
    preset_factor = 1.1 if preset == Preset.QUALITY_PRIORITY else 0.95
    base = original_size * base_ratio * preset_factor

    absolute_min = int(original_size * 0.005)
    absolute_max = int(original_size * 0.50)
    low = min(max(int(base * 0.3), absolute_min), absolute_max)
    high = min(max(int(base * 1.7), absolute_min), absolute_max)
    return low, high


class Dashboard:
    """Renders the live dashboard UI."""

    def __init__(self, state: UIState, console: Optional[Console] = None):
        self.state = state
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    def _generate_status_panel(self) -> Panel:
        with self.state._lock:
            if self.state.cancel_requested and not self.state.finished:
                status, color = "CANCELLING", "yellow"
            elif self.state.cancel_requested:
                status, color = "CANCELLED", "bright_red"
            elif self.state.finished:
                status, color = "FINISHED", "cyan"
            else:
                status, color = "ACTIVE", "green"

            lines = [
                f"[dim]Status:[/] [bold {color}]{status}[/]",
                (
                    f"[dim]Jobs:[/] {self.state.done_count}/{self.state.total_jobs} | "
                    f"[dim]Done:[/] {self.state.completed_count} | "
                    f"[dim]Failed:[/] {self.state.failed_count} | "
                    f"[dim]Cancelled:[/] {self.state.cancelled_count}"
                ),
                (
                    f"[dim]Storage:[/] {format_size(self.state.space_saved_bytes)} saved "
                    f"({self.state.compression_ratio * 100:.1f}% avg ratio)"
                ),
            ]
        return Panel("\n".join(lines), title="COMPRESSION STATUS", border_style="cyan")

    def _generate_progress_panel(self) -> Panel:
        with self.state._lock:
            job = self.state.active_job
            if job is None:
                return Panel("No file processing", title="CURRENTLY PROCESSING", border_style="yellow")

            frame = self.state.active_frame
            percent = frame.percent if frame and frame.percent is not None else None
            elapsed = 0.0
            if self.state.job_start_time:
                elapsed = (datetime.now() - self.state.job_start_time).total_seconds()

            details = [f"[yellow]{job.input.real_path.name}[/] -> {job.output.real_path.name}"]
            stats = [f"[dim]Elapsed:[/] {format_duration(elapsed)}"]
            if frame is not None:
                if frame.speed:
                    stats.append(f"[dim]Speed:[/] {frame.speed:.2f}x")
                if frame.fps:
                    stats.append(f"[dim]FPS:[/] {frame.fps:.0f}")
                stats.append(
                    f"[dim]ETA:[/] {format_duration(frame.eta_seconds) if frame.eta_seconds is not None else 'calculating...'}"
                )
            details.append(" | ".join(stats))
            if self.state.active_estimate:
                low, high = self.state.active_estimate
                details.append(
                    f"[dim]Input:[/] {format_size(self.state.active_input_size)} | "
                    f"[dim]Estimated output:[/] {format_size(low)} - {format_size(high)}"
                )

        bar = ProgressBar(total=100.0, completed=percent or 0.0, pulse=percent is None)
        label = f"{percent:5.1f}%" if percent is not None else "  ...  "
        row = Table.grid(padding=(0, 1))
        row.add_column(ratio=1)
        row.add_column(width=7, justify="right")
        row.add_row(bar, label)
        return Panel(Group("\n".join(details), row), title="CURRENTLY PROCESSING", border_style="yellow")

    def _generate_recent_panel(self) -> Panel:
        with self.state._lock:
            if not self.state.recent_results:
                return Panel("No files completed yet", title="LAST COMPLETED", border_style="green")

            table = Table(show_header=False, box=None, padding=(0, 1))
            table.add_column("", width=1)
            table.add_column("File", width=40, no_wrap=True, overflow="ellipsis")
            table.add_column("Input", justify="right", style="cyan")
            table.add_column("Output", justify="right", style="cyan")
            table.add_column("Saved", justify="right", style="green")
            table.add_column("Time", justify="right", style="yellow")

            for result in list(self.state.recent_results):
                name = Path(result.input_path).name
                if result.status == JobStatus.COMPLETED:
                    ratio = result.bytes_saved / result.original_size * 100 if result.original_size else 0.0
                    table.add_row(
                        "[green]✓[/]",
                        name,
                        format_size(result.original_size),
                        format_size(result.compressed_size or 0),
                        f"{ratio:.1f}%",
                        format_duration(result.elapsed_seconds),
                    )
                elif result.status == JobStatus.CANCELLED:
                    table.add_row("[yellow]✗[/]", name, format_size(result.original_size), "[yellow]CANCELLED[/]", "", "")
                else:
                    kind = result.error_detail.kind if result.error_detail else "error"
                    table.add_row("[red]✗[/]", name, format_size(result.original_size), f"[red]{kind.upper()}[/]", "", "")

        return Panel(table, title="LAST COMPLETED", border_style="green")

    def create_display(self) -> Group:
        return Group(
            self._generate_status_panel(),
            self._generate_progress_panel(),
            self._generate_recent_panel(),
        )

    def render_summary(self, summary: BatchSummary) -> Table:
        table = Table(title="Compression summary", show_lines=False)
        table.add_column("File", no_wrap=True, overflow="ellipsis")
        table.add_column("Status")
        table.add_column("Original", justify="right")
        table.add_column("Compressed", justify="right")
        table.add_column("Saved", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Details", overflow="fold")

        for result in summary.results:
            if result.status == JobStatus.COMPLETED:
                status = "[green]completed[/]"
                saved = f"{result.bytes_saved / result.original_size * 100:.1f}%" if result.original_size else "-"
                compressed = format_size(result.compressed_size or 0)
                details = result.output_path or ""
            elif result.status == JobStatus.CANCELLED:
                status, saved, compressed, details = "[yellow]cancelled[/]", "-", "-", ""
            else:
                status, saved, compressed = "[red]failed[/]", "-", "-"
                details = result.error or ""
                if result.error_detail and result.error_detail.preserved_path:
                    details += f" (kept {result.error_detail.preserved_path})"
            table.add_row(
                Path(result.input_path).name,
                status,
                format_size(result.original_size),
                compressed,
                saved,
                format_duration(result.elapsed_seconds),
                details,
            )

        table.caption = (
            f"{summary.successful} ok, {summary.failed} failed, {summary.cancelled} cancelled | "
            f"{format_size(summary.total_original_bytes)} -> {format_size(summary.total_compressed_bytes)} "
            f"(saved {format_size(summary.bytes_saved)}, {summary.saved_percent:.1f}%) in "
            f"{format_duration(summary.elapsed_seconds)}"
        )
        return table

    def print_summary(self, summary: BatchSummary):
        self.console.print(self.render_summary(summary))

    def _refresh_loop(self):
        """Background thread to update Live display."""
        while not self._stop_refresh.is_set():
            if self._live:
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)
            self._stop_refresh.wait(0.25)

    def start(self):
        """Starts the Live display and refresh thread."""
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=8)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        """Stops the Live display and refresh thread."""
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
