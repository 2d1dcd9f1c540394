"""Terminal progress rendering for backfills."""

from __future__ import annotations

from threading import Lock

from rich.console import Console
from rich.errors import LiveError
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.status import Status
from rich.text import Text


class RateColumn(ProgressColumn):
    """Render throughput as ``X.X videos/s``."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        return Text(f"{speed:.1f} videos/s", style="progress.percentage")


class ProgressReporter:
    """Show a spinner while a source is listed, then a bar while details are fetched.

    :meth:`update` doubles as the backfill ``on_progress`` callback and is
    safe to call from worker threads. Without a terminal nothing is rendered,
    but the last reported counts are still kept.
    """

    def __init__(self, label: str = "backfill", enabled: bool = True, console: Console | None = None) -> None:
        self.label = label
        self.console = console or Console()
        self.enabled = enabled and self.console.is_terminal
        self.done = 0
        self.total = 0
        self._lock = Lock()
        self._status: Status | None = None
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None

    def start(self, message: str) -> None:
        if not self.enabled or self._status is not None:
            return
        self._status = self.console.status(message)
        self._status.start()

    def update(self, done: int, total: int) -> None:
        with self._lock:
            self.done = done
            self.total = total
            if not self.enabled:
                return
            self._stop_status()
            if self._progress is None and not self._open_bar(total):
                return
            self._progress.update(self._task_id, completed=done, total=total)

    def _open_bar(self, total: int) -> bool:
        progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[source]:<18}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            RateColumn(),
            console=self.console,
            transient=True,
            refresh_per_second=12,
            expand=True,
        )
        try:
            progress.start()
        except LiveError:
            # another live display owns the console
            self.enabled = False
            return False
        self._progress = progress
        self._task_id = progress.add_task("backfill", total=total, source=escape(self.label))
        return True

    def _stop_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def close(self) -> None:
        with self._lock:
            self._stop_status()
            if self._progress is not None:
                self._progress.stop()
                self._progress = None
                self._task_id = None

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


__all__ = ["ProgressReporter", "RateColumn"]
