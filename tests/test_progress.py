"""Unit tests for progress reporters."""

import io
import logging
from unittest.mock import Mock, patch

import pytest
from rich.console import Console

from subtitle_ocr.models import RecognizedEvent
from subtitle_ocr.progress import (
    CompositeProgressReporter,
    LoggingProgressReporter,
    PrefectProgressReporter,
    ProgressReporter,
    RichProgressReporter,
)

pytestmark = pytest.mark.unit

EVENTS = [
    RecognizedEvent(index=0, start_time=1000, end_time=2000, text="Hello", confidence=0.9),
    RecognizedEvent(index=1, start_time=2500, end_time=3000, text="World", confidence=1.0),
]


class TestProgressReporter:
    """Base reporter."""

    def test_noop(self):
        """Test the base class accepts every notification."""
        reporter = ProgressReporter()
        reporter.on_unit_progress("1:0", 1, 2)
        reporter.on_event_failed("1:0", 0, "RecognitionFailed", "timeout")
        reporter.on_track_result(1, EVENTS)
        reporter.on_track_failed(None, "NoSubtitleTrackFound", "none")


class TestLoggingProgressReporter:
    """Logging reporter."""

    def test_messages(self, caplog):
        """Test completion, failure and result messages."""
        reporter = LoggingProgressReporter()
        with caplog.at_level(logging.DEBUG, logger="subtitle_ocr.progress"):
            reporter.on_unit_progress("3:0", 1, 2)
            reporter.on_unit_progress("3:0", 2, 2)
            reporter.on_event_failed("3:0", 1, "MalformedRunLength", "bad run")
            reporter.on_track_result(3, EVENTS)
            reporter.on_track_failed(4, "UnsupportedCodec", "S_TEXT/USF")

        messages = [r.getMessage() for r in caplog.records]
        assert "Work unit 3:0: 1/2" in messages
        assert "Work unit 3:0 complete (2 events)" in messages
        assert "Event 1 in unit 3:0 failed: MalformedRunLength: bad run" in messages
        assert "Track 3: 2 events recognized" in messages
        levels = {r.getMessage(): r.levelno for r in caplog.records}
        assert levels["Track 4 failed: UnsupportedCodec: S_TEXT/USF"] == logging.ERROR

    def test_custom_logger(self):
        """Test a supplied logger receives the messages."""
        log = Mock()
        LoggingProgressReporter(log).on_track_result(1, EVENTS)
        log.info.assert_called_once_with("Track 1: 2 events recognized")


class TestRichProgressReporter:
    """Terminal reporter."""

    def test_output(self):
        """Test failures and results are printed, with text when requested."""
        buffer = io.StringIO()
        console = Console(file=buffer, width=120, no_color=True)
        with RichProgressReporter(console, show_text=True) as reporter:
            reporter.on_unit_progress("1:0", 1, 2)
            reporter.on_unit_progress("1:0", 2, 2)
            reporter.on_event_failed("1:0", 5, "RecognitionFailed", "timed out")
            reporter.on_track_result(1, EVENTS)
            reporter.on_track_failed(2, "UnsupportedCodec", "nope")

        output = buffer.getvalue()
        assert "Event 5 (1:0): RecognitionFailed: timed out" in output
        assert "Track 1: 2 events" in output
        assert "Hello" in output
        assert "Track 2: UnsupportedCodec: nope" in output
        assert list(reporter._tasks) == ["1:0"]


class TestPrefectProgressReporter:
    """Prefect reporter."""

    def test_table_artifact(self):
        """Test a table artifact is published per track."""
        log = Mock()
        with patch("subtitle_ocr.progress.create_table_artifact") as create_artifact:
            PrefectProgressReporter(log).on_track_result(7, EVENTS)

        kwargs = create_artifact.call_args.kwargs
        assert kwargs["key"] == "subtitle-ocr-track-7"
        assert kwargs["table"]["Text"] == ["Hello", "World"]
        assert kwargs["table"]["Confidence"] == ["0.90", "1.00"]
        log.info.assert_called_once()

    def test_run_logger_by_default(self):
        """Test the Prefect run logger is used when no logger is given."""
        run_logger = Mock()
        with patch("subtitle_ocr.progress.get_run_logger", return_value=run_logger):
            reporter = PrefectProgressReporter()
        assert reporter.log is run_logger


class TestCompositeProgressReporter:
    """Fan-out reporter."""

    def test_fan_out(self):
        """Test every reporter receives every notification in order."""
        first, second = Mock(spec=ProgressReporter), Mock(spec=ProgressReporter)
        composite = CompositeProgressReporter(first, second)
        composite.on_unit_progress("1:0", 1, 1)
        composite.on_event_failed("1:0", 0, "X", "y")
        composite.on_track_result(1, EVENTS)
        composite.on_track_failed(2, "X", "y")

        for reporter in (first, second):
            reporter.on_unit_progress.assert_called_once_with("1:0", 1, 1)
            reporter.on_event_failed.assert_called_once_with("1:0", 0, "X", "y")
            reporter.on_track_result.assert_called_once_with(1, EVENTS)
            reporter.on_track_failed.assert_called_once_with(2, "X", "y")
