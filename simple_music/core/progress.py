"""
Rich progress bars for the command line.

    TransferProgressBar  one file, fed 0.0-1.0 fractions by the engines
    AlbumProgressBar     one bar per album, advanced after every track

Both are context managers:

    with TransferProgressBar("Queen - Bohemian Rhapsody") as bar:
        await service.cache_and_play(video, meta, on_progress=bar.set_fraction)
"""

from abc import ABC, abstractmethod

from rich import get_console
from rich.console import JustifyMethod, OverflowMethod
from rich.progress import BarColumn, Progress, ProgressColumn, Task, TaskID
from rich.style import StyleType
from rich.text import Text
from rich.theme import Theme


PROGRESS_THEME = Theme({
    "bar.back": "grey23",
    "bar.complete": "rgb(29,185,84)",
    "bar.finished": "rgb(114,156,31)",
    "bar.pulse": "rgb(29,185,84)",
    "progress.percentage": "white",
})


class TruncatedTextColumn(ProgressColumn):
    """Text column with a fixed width; longer text ends in an ellipsis."""

    def __init__(
        self,
        text_format: str,
        width: int = 20,
        style: StyleType = "none",
        justify: JustifyMethod = "left",
        overflow: OverflowMethod = "ellipsis",
    ) -> None:
        self.text_format = text_format
        self.width = width
        self.style = style
        self.justify: JustifyMethod = justify
        self.overflow: OverflowMethod = overflow
        super().__init__()

    def render(self, task: Task) -> Text:
        text = Text.from_markup(
            self.text_format.format(task=task), style=self.style, justify=self.justify
        )
        text.truncate(max_width=self.width, overflow=self.overflow, pad=True)
        return text


class BaseProgressBar(ABC):
    """
    Shared Rich setup: theme, columns, start/stop, context manager.

    Subclasses provide the status text shown between the description and
    the bar.
    """

    def __init__(self, total: float, description: str, status_width: int = 30) -> None:
        self.total = total
        self.description = description
        self.completed: float = 0

        self.console = get_console()
        self.console.push_theme(PROGRESS_THEME)
        self.progress = Progress(
            TruncatedTextColumn("[white]{task.description}", width=30),
            TruncatedTextColumn("{task.fields[status]}", width=status_width, style="white"),
            BarColumn(bar_width=40, finished_style="green"),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=self.console,
            transient=False,
            refresh_per_second=10,
        )
        self.task_id: TaskID | None = None
        self._started = False

    def __enter__(self) -> "BaseProgressBar":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def start(self) -> None:
        if self._started:
            return
        self.progress.start()
        self.task_id = self.progress.add_task(
            description=self.description,
            total=self.total,
            status=self._get_status_text(),
        )
        self._started = True

    def stop(self) -> None:
        if self._started:
            self.progress.stop()
            self._started = False

    def log(self, message: str) -> None:
        """Print above the bar."""
        self.progress.console.print(message, highlight=False)

    def _refresh(self) -> None:
        if self.task_id is not None:
            self.progress.update(
                self.task_id,
                completed=self.completed,
                status=self._get_status_text(),
            )

    @abstractmethod
    def _get_status_text(self) -> str:
        ...


class TransferProgressBar(BaseProgressBar):
    """
    Single file transfer.

    Example:
        Queen - Bohemian Rhapsody   streaming        ━━━━━━━━━━━━━━━━━  42%
    """

    def __init__(self, description: str, status: str = "downloading") -> None:
        self.status = status
        super().__init__(total=100, description=description, status_width=15)

    def _get_status_text(self) -> str:
        return f"[cyan]{self.status}[/cyan]"

    def set_fraction(self, fraction: float) -> None:
        """Progress callback: 0.0-1.0."""
        self.completed = max(0.0, min(fraction, 1.0)) * 100
        self._refresh()

    def set_status(self, status: str) -> None:
        self.status = status
        self._refresh()


class AlbumProgressBar(BaseProgressBar):
    """
    Album download, advanced once per track.

    Example:
        Abbey Road      12 / 17 Songs Downloaded   ━━━━━━━━━━━━━━━━━  70%
    """

    def __init__(self, total: int, description: str) -> None:
        self.details = f"0 / {total} Songs Downloaded"
        super().__init__(total=total, description=description)

    def _get_status_text(self) -> str:
        return f"[green]{self.details}[/green]"

    def update(self, fraction: float, details: str | None = None) -> None:
        self.completed = round(fraction * self.total)
        if details:
            self.details = details
        self._refresh()
