import threading
from datetime import datetime
from typing import List, Optional

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from logscan.domain.events import StopRequested
from logscan.domain.models import JobState, LogEvent
from logscan.pipeline.results import ResultAggregator, ResultSnapshot

STATE_STYLES = {
    JobState.RUNNING: "bold green",
    JobState.STOPPING: "bold yellow",
    JobState.STOPPED: "bold cyan",
}


def format_time(seconds: Optional[float]) -> str:
    """Format time: 59s, 01m 01s, 1h 01m."""
    if seconds is None:
        return "--:--"
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60):02d}m {int(seconds % 60):02d}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"


def shorten(text: str, max_len: int = 80) -> str:
    """First line of text, cut to max_len with an ellipsis."""
    line = text.splitlines()[0] if text else ""
    if len(line) <= max_len:
        return line
    return line[: max_len - 1] + "…"


class Dashboard:
    """Live terminal view of a running scan job.

    Polls the aggregator snapshot from a refresh thread; the pipeline never
    calls into the UI.
    """

    def __init__(
        self,
        results: ResultAggregator,
        refresh_per_second: int = 4,
        recent_events: int = 10,
        console: Optional[Console] = None,
    ):
        self.results = results
        self.refresh_per_second = refresh_per_second
        self.recent_events = recent_events
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()
        self._stop_notice = threading.Event()

    # --- Panels ---

    def _generate_status(self, snapshot: ResultSnapshot) -> RenderableType:
        style = STATE_STYLES.get(snapshot.job_state, "bold")
        status = Text.assemble(("● ", style), (snapshot.job_state.value, style))
        if snapshot.error:
            status.append(f"  error: {snapshot.error}", style="bold red")
        elif snapshot.job_state == JobState.STOPPED and snapshot.end_time is not None:
            status.append("  stopped" if snapshot.stop_requested else "  finished", style="dim")
        elif self._stop_notice.is_set():
            status.append("  stop requested, finishing active tasks", style="yellow")
        return status

    def _generate_progress(self, snapshot: ResultSnapshot) -> Panel:
        total = snapshot.files_to_process
        done = snapshot.processed_files
        pct = (done / total * 100) if total else 0.0

        elapsed = None
        if snapshot.start_time is not None:
            end = snapshot.end_time or datetime.now()
            elapsed = (end - snapshot.start_time).total_seconds()

        bar = ProgressBar(total=max(total, 1), completed=min(done, max(total, 1)), width=None)
        bar_grid = Table.grid(padding=(0, 1))
        bar_grid.add_row(bar, f"{done}/{total}", "•", f"{pct:.1f}%", "•", format_time(elapsed))

        counters = Text.assemble(
            ("Files to process: ", "dim"), str(total), "   ",
            ("Processed: ", "dim"), str(done), "   ",
            ("Selected: ", "dim"), (str(snapshot.selected_files), "green"), "   ",
            ("Events: ", "dim"), str(snapshot.event_count),
        )
        return Panel(Group(bar_grid, counters), title="PROGRESS", border_style="cyan")

    def _generate_events(self, events: List[LogEvent]) -> Panel:
        table = Table(expand=True, show_edge=False, box=None, padding=(0, 1))
        table.add_column("Time", style="cyan", no_wrap=True)
        table.add_column("Location", style="magenta", no_wrap=True)
        table.add_column("File", no_wrap=True)
        table.add_column("Line", justify="right", style="dim")
        table.add_column("Text", overflow="ellipsis", no_wrap=True)
        for event in events:
            table.add_row(
                event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                event.location,
                event.file.rsplit("/", 1)[-1],
                str(event.line_number),
                shorten(event.text),
            )
        if not events:
            table.add_row("", "", Text("no events yet", style="dim"), "", "")
        return Panel(table, title="RECENT EVENTS", border_style="blue")

    def create_display(self) -> RenderableType:
        snapshot = self.results.snapshot()
        recent = self.results.events()[-self.recent_events:]
        return Group(
            self._generate_status(snapshot),
            self._generate_progress(snapshot),
            self._generate_events(recent),
        )

    # --- Lifecycle ---

    def _on_stop_requested(self, event: StopRequested):
        self._stop_notice.set()

    def _refresh_loop(self):
        while not self._stop_refresh.is_set():
            if self._live:
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)
            self._stop_refresh.wait(1.0 / self.refresh_per_second)

    def start(self):
        self._stop_notice.clear()
        self.results.event_bus.subscribe(StopRequested, self._on_stop_requested)
        self._live = Live(
            self.create_display(),
            console=self.console,
            refresh_per_second=self.refresh_per_second,
        )
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, name="dashboard", daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        self.results.event_bus.unsubscribe(StopRequested, self._on_stop_requested)
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
            self._refresh_thread = None
        if self._live:
            # Final update to show the STOPPED state
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()
            self._live = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
