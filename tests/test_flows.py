"""Tests for the subtitle-ocr-extract Prefect flow.

The flow function is called through ``.fn`` with the run logger, artifact
publishing and backend lookup patched, so no Prefect server is needed.
"""

from unittest.mock import Mock, patch

import pytest

from conftest import FakeEngine, text_track, vobsub_track
from subtitle_ocr.flows import extract_subtitles, summarize
from subtitle_ocr.io import read_events_jsonl
from subtitle_ocr.models import PipelineReport, TrackFailure, TrackResult


@pytest.fixture
def run_logger() -> Mock:
    return Mock()


@pytest.fixture(autouse=True)
def mock_prefect(run_logger):
    """Patch the Prefect run logger and artifact publishing for all tests."""
    with patch("subtitle_ocr.flows.get_run_logger", return_value=run_logger), patch(
        "subtitle_ocr.progress.create_table_artifact"
    ) as create_artifact:
        yield create_artifact


@pytest.mark.unit
class TestExtractSubtitles:
    """Flow execution."""

    def test_text_only_skips_backend(self, mock_prefect):
        """Test text tracks run without building a recognition engine."""
        with patch("subtitle_ocr.flows.get_backend") as get_backend:
            summary = extract_subtitles.fn([text_track(texts=(("Hi", 0, 500), ("There", 600, 900)))])

        get_backend.assert_not_called()
        assert summary["events_recognized"] == 2
        assert summary["events_failed"] == 0
        assert summary["tracks"][0]["track_id"] == 1
        assert mock_prefect.call_args.kwargs["key"] == "subtitle-ocr-track-1"

    def test_bitmap_uses_backend(self):
        """Test bitmap tracks use the named backend."""
        engine = FakeEngine(text="From bitmap")
        with patch("subtitle_ocr.flows.get_backend", return_value=engine) as get_backend:
            summary = extract_subtitles.fn([vobsub_track()], backend="fake")

        get_backend.assert_called_once_with("fake")
        assert summary["events_recognized"] == 1
        assert len(engine.calls) == 1

    def test_writes_jsonl(self, tmp_path):
        """Test each track's events are written when an output directory is given."""
        summary = extract_subtitles.fn([text_track(track_id=3)], output_dir=tmp_path)

        events = read_events_jsonl(tmp_path / "track_3.jsonl")
        assert [e.text for e in events] == ["Hello"]
        assert summary["events_recognized"] == 1

    def test_failures_in_summary(self):
        """Test track and event failures are reported as plain data."""
        tracks = [
            text_track(track_id=1, codec_id="S_TEXT/USF"),
            text_track(track_id=2, texts=(("ok", 0, 10),)),
        ]
        summary = extract_subtitles.fn(tracks)

        assert summary["track_failures"] == [
            {
                "track_id": 1,
                "codec_id": "S_TEXT/USF",
                "kind": "UnsupportedCodec",
                "reason": "Unsupported subtitle codec: 'S_TEXT/USF'",
            }
        ]
        assert [t["track_id"] for t in summary["tracks"]] == [2]

    def test_logs_progress(self, run_logger):
        """Test the flow logs through the Prefect run logger."""
        extract_subtitles.fn([text_track()])
        messages = [c.args[0] for c in run_logger.info.call_args_list]
        assert "Starting subtitle OCR for 1 tracks" in messages
        assert any(m.startswith("Subtitle OCR complete") for m in messages)


@pytest.mark.unit
def test_summarize_event_failures():
    """Test event failures are serialized with their stage."""
    report = PipelineReport(
        tracks=[
            TrackResult(
                track_id=4,
                codec_id="S_VOBSUB",
                failures=[
                    {
                        "track_id": 4,
                        "unit_id": "4:0",
                        "event_index": 0,
                        "stage": "decode",
                        "kind": "MalformedRunLength",
                        "reason": "bad",
                    }
                ],
            )
        ],
        track_failures=[TrackFailure(track_id=None, kind="NoSubtitleTrackFound", reason="none")],
    )
    summary = summarize(report)
    assert summary["events_failed"] == 1
    assert summary["tracks"][0]["failures"][0]["stage"] == "decode"
    assert summary["track_failures"][0]["track_id"] is None
