"""Worker progress interface and observers.

The orchestrator reports to a ``ProgressReporter``. Every method is a no-op on
the base class, so observers override only what they need. Reporter calls may
arrive from worker threads; ``on_unit_progress`` calls for one unit are
serialized by that unit's lock.
"""

import logging
import threading
from collections.abc import Sequence

from prefect import get_run_logger
from prefect.artifacts import create_table_artifact
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from .models import RecognizedEvent

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Receives progress from the pipeline. Subclass and override as needed.

    ``on_unit_progress`` counts are per work unit. A track's units run one
    after another, so a track-level count is the sum of the totals of units
    already complete plus ``completed`` for the current one. For 10 events in
    units of 4 the unit boundaries therefore read 4, 8 and 10.

    Exceptions raised by a reporter are logged by the pipeline and ignored.
    """

    def on_unit_progress(self, unit_id: str, completed: int, total: int) -> None:
        pass

    def on_event_failed(self, unit_id: str, event_index: int, failure_kind: str, reason: str) -> None:
        pass

    def on_track_result(self, track_id: int, events: Sequence[RecognizedEvent]) -> None:
        pass

    def on_track_failed(self, track_id: int | None, failure_kind: str, reason: str) -> None:
        pass


class LoggingProgressReporter(ProgressReporter):
    """Reports through the ``logging`` module."""

    def __init__(self, log: logging.Logger | logging.LoggerAdapter | None = None):
        self.log = log or logger

    def on_unit_progress(self, unit_id: str, completed: int, total: int) -> None:
        if completed == total:
            self.log.info(f"Work unit {unit_id} complete ({total} events)")
        else:
            self.log.debug(f"Work unit {unit_id}: {completed}/{total}")

    def on_event_failed(self, unit_id: str, event_index: int, failure_kind: str, reason: str) -> None:
        self.log.warning(f"Event {event_index} in unit {unit_id} failed: {failure_kind}: {reason}")

    def on_track_result(self, track_id: int, events: Sequence[RecognizedEvent]) -> None:
        self.log.info(f"Track {track_id}: {len(events)} events recognized")

    def on_track_failed(self, track_id: int | None, failure_kind: str, reason: str) -> None:
        self.log.error(f"Track {track_id} failed: {failure_kind}: {reason}")


class RichProgressReporter(ProgressReporter):
    """Terminal progress bars, one per work unit, plus failure lines.

    Use as a context manager so the live display is started and stopped.
    """

    def __init__(self, console: Console | None = None, show_text: bool = False):
        self.console = console or Console(stderr=True)
        self.show_text = show_text
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console,
        )
        self._tasks: dict[str, int] = {}
        self._lock = threading.Lock()

    def __enter__(self):
        self.progress.start()
        return self

    def __exit__(self, *exc_info):
        self.progress.stop()

    def on_unit_progress(self, unit_id: str, completed: int, total: int) -> None:
        with self._lock:
            if unit_id not in self._tasks:
                self._tasks[unit_id] = self.progress.add_task(f"Unit {unit_id}", total=total)
            self.progress.update(self._tasks[unit_id], completed=completed)

    def on_event_failed(self, unit_id: str, event_index: int, failure_kind: str, reason: str) -> None:
        self.console.print(f"[red]✗[/red] Event {event_index} ({unit_id}): {failure_kind}: {reason}")

    def on_track_result(self, track_id: int, events: Sequence[RecognizedEvent]) -> None:
        self.console.print(f"[green]✓[/green] Track {track_id}: {len(events)} events")
        if self.show_text:
            for event in events:
                self.console.print(f"  [dim]{event.start_time}-{event.end_time}[/dim] {event.text}")

    def on_track_failed(self, track_id: int | None, failure_kind: str, reason: str) -> None:
        self.console.print(f"[red]Error:[/red] Track {track_id}: {failure_kind}: {reason}")


class PrefectProgressReporter(LoggingProgressReporter):
    """Reports to the current Prefect run logger and publishes a table artifact per track."""

    def __init__(
        self,
        log: logging.Logger | logging.LoggerAdapter | None = None,
        artifact_prefix: str = "subtitle-ocr",
    ):
        super().__init__(log or get_run_logger())
        self.artifact_prefix = artifact_prefix

    def on_track_result(self, track_id: int, events: Sequence[RecognizedEvent]) -> None:
        super().on_track_result(track_id, events)
        create_table_artifact(
            key=f"{self.artifact_prefix}-track-{track_id}",
            table={
                "Index": [e.index for e in events],
                "Start (ms)": [e.start_time for e in events],
                "End (ms)": [e.end_time for e in events],
                "Text": [e.text for e in events],
                "Confidence": [f"{e.confidence:.2f}" for e in events],
            },
            description=f"Recognized subtitle events for track {track_id}",
        )


class CompositeProgressReporter(ProgressReporter):
    """Fans every notification out to several reporters, in order."""

    def __init__(self, *reporters: ProgressReporter):
        self.reporters = reporters

    def on_unit_progress(self, unit_id: str, completed: int, total: int) -> None:
        for reporter in self.reporters:
            reporter.on_unit_progress(unit_id, completed, total)

    def on_event_failed(self, unit_id: str, event_index: int, failure_kind: str, reason: str) -> None:
        for reporter in self.reporters:
            reporter.on_event_failed(unit_id, event_index, failure_kind, reason)

    def on_track_result(self, track_id: int, events: Sequence[RecognizedEvent]) -> None:
        for reporter in self.reporters:
            reporter.on_track_result(track_id, events)

    def on_track_failed(self, track_id: int | None, failure_kind: str, reason: str) -> None:
        for reporter in self.reporters:
            reporter.on_track_failed(track_id, failure_kind, reason)
