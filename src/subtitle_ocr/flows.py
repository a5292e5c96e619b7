"""
Subtitle OCR Flow

Runs the subtitle extraction pipeline as a Prefect flow inside the worker fleet.

Flow: subtitle-ocr-extract
Trigger: the hosting worker, once a container's subtitle tracks are demuxed

Steps:
1. Build the recognition engine (only when a bitmap track is present)
2. Run every subtitle track through the pipeline
3. Publish a table artifact per track and write JSONL results if requested
4. Return a JSON-serializable summary
"""

from pathlib import Path
from typing import Any

from prefect import flow, get_run_logger

from .backends import get_backend
from .classifier import classify
from .config import get_settings
from .io import write_events_jsonl
from .models import CueFamily, PipelineReport, Track
from .pipeline import SubtitlePipeline
from .progress import PrefectProgressReporter
from .recognition import RecognitionAdapter


def summarize(report: PipelineReport) -> dict[str, Any]:
    """JSON-serializable summary of a pipeline report."""
    return {
        "tracks": [
            {
                "track_id": track.track_id,
                "codec_id": track.codec_id,
                "language": track.language,
                "events_recognized": len(track.events),
                "events_failed": len(track.failures),
                "failures": [failure.model_dump(mode="json") for failure in track.failures],
            }
            for track in report.tracks
        ],
        "track_failures": [failure.model_dump(mode="json") for failure in report.track_failures],
        "events_recognized": sum(len(track.events) for track in report.tracks),
        "events_failed": sum(len(track.failures) for track in report.tracks),
    }


@flow(name="subtitle-ocr-extract", log_prints=True, validate_parameters=False)
def extract_subtitles(
    tracks: list[Track],
    backend: str | None = None,
    output_dir: Path | None = None,
) -> dict[str, Any]:
    """
    Extracts timed text from demuxed subtitle tracks.

    Args:
        tracks: Tracks with their packets, as supplied by the demuxer
        backend: Recognition backend name (default: SUBTITLE_OCR_OCR_BACKEND)
        output_dir: If set, each track's events are written to ``track_<id>.jsonl``

    Returns:
        Summary dict with per-track counts and all failure records
    """
    logger = get_run_logger()
    settings = get_settings()

    logger.info(f"Starting subtitle OCR for {len(tracks)} tracks")

    needs_recognition = any(
        classify(t.codec_id, t.packets[0] if t.packets else None).family is CueFamily.BITMAP for t in tracks
    )
    recognizer = None
    if needs_recognition:
        engine = get_backend(backend)
        logger.info(f"Using recognition backend: {engine.name or type(engine).__name__}")
        recognizer = RecognitionAdapter.from_settings(engine, settings)

    pipeline = SubtitlePipeline.from_settings(
        settings, recognizer=recognizer, reporter=PrefectProgressReporter(logger)
    )
    try:
        report = pipeline.process_tracks(tracks)
    finally:
        if recognizer is not None:
            recognizer.close()

    if output_dir is not None:
        for track in report.tracks:
            path = Path(output_dir) / f"track_{track.track_id}.jsonl"
            count = write_events_jsonl(track.events, path)
            logger.info(f"Wrote {count} events to {path}")

    summary = summarize(report)
    logger.info(
        f"Subtitle OCR complete: {summary['events_recognized']} events recognized, "
        f"{summary['events_failed']} failed, {len(report.track_failures)} track failures"
    )
    return summary
