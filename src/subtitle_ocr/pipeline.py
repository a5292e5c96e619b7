"""Pipeline orchestrator.

Per track: classify the codec, build cue drafts from the packets, order them
by start time, group them into work units and drive each event to exactly one
terminal outcome:

    text:   Pending -> Classified -> Skipped -> Recognized
    bitmap: Pending -> Classified -> Decoded -> Preprocessed -> Recognized
    any non-terminal state -> Failed

Work units run in order; events inside a unit run in parallel on a thread
pool. Event-level errors become ``EventFailure`` records. Track-level errors
become a single ``TrackFailure`` and the next track is processed.
"""

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from .bitmap.decoder import decode_bitmap
from .classifier import CueBuilder, CueDraft, classify
from .config import DEFAULT_MAX_WORKERS, DEFAULT_WORK_UNIT_SIZE, Settings
from .demuxer import Demuxer, InMemoryDemuxer, iter_packets
from .errors import (
    BitmapDecodeError,
    EventError,
    NoSubtitleTrackFound,
    RecognitionUnavailable,
    TrackError,
    UnsupportedCodec,
)
from .models import (
    EVENT_TRANSITIONS,
    CueFamily,
    EventFailure,
    EventState,
    Packet,
    PipelineReport,
    RecognizedEvent,
    Stage,
    SubtitleEvent,
    TextCue,
    Track,
    TrackFailure,
    TrackResult,
)
from .preprocess import PreprocessConfig, preprocess
from .progress import ProgressReporter
from .recognition import RecognitionAdapter
from .selection import TrackSelector, is_subtitle_codec
from .workunits import WorkUnit, make_work_units

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "InternalError"
UNDETERMINED_LANGUAGES = frozenset({"", "und", "mis", "mul", "zxx"})


class EventRun:
    """Lifecycle of one event; rejects transitions the state machine does not allow."""

    def __init__(self, index: int):
        self.index = index
        self.state = EventState.PENDING

    def advance(self, state: EventState) -> None:
        allowed = EVENT_TRANSITIONS[self.state]
        if state is EventState.FAILED and not self.state.is_terminal:
            allowed = allowed | {EventState.FAILED}
        if state not in allowed:
            raise RuntimeError(f"Event {self.index}: illegal transition {self.state.value} -> {state.value}")
        self.state = state


class SubtitlePipeline:
    """Turns subtitle tracks into timed text.

    Args:
        recognizer: Adapter for bitmap tracks. Without one, bitmap tracks fail
            with ``RecognitionUnavailable``; text tracks still work.
        preprocess_config: Options for the bitmap image preprocessor
        selector: Chooses tracks to process. Defaults to every subtitle track.
        reporter: Receives progress and failure notifications
        work_unit_size: Events per work unit
        max_workers: Threads used for events within a unit
        language: ISO 639-2 tag used when a track has none
    """

    def __init__(
        self,
        recognizer: RecognitionAdapter | None = None,
        preprocess_config: PreprocessConfig | None = None,
        selector: TrackSelector | None = None,
        reporter: ProgressReporter | None = None,
        work_unit_size: int = DEFAULT_WORK_UNIT_SIZE,
        max_workers: int = DEFAULT_MAX_WORKERS,
        language: str = "eng",
    ):
        if work_unit_size < 1:
            raise ValueError(f"work_unit_size must be at least 1, got {work_unit_size}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.recognizer = recognizer
        self.preprocess_config = preprocess_config or PreprocessConfig()
        self.selector = selector
        self.reporter = reporter or ProgressReporter()
        self.work_unit_size = work_unit_size
        self.max_workers = max_workers
        self.language = language

    @classmethod
    def from_settings(
        cls, settings: Settings, recognizer: RecognitionAdapter | None = None, **overrides
    ) -> "SubtitlePipeline":
        """Pipeline configured from runtime settings; keyword arguments override them."""
        options = {
            "preprocess_config": PreprocessConfig.from_settings(settings),
            "work_unit_size": settings.work_unit_size,
            "max_workers": settings.max_workers,
            "language": settings.language,
        }
        options.update(overrides)
        return cls(recognizer=recognizer, **options)

    # -------------------------------------------------------------------------
    # Tracks
    # -------------------------------------------------------------------------

    def process_tracks(self, tracks: Iterable[Track]) -> PipelineReport:
        """Process already-extracted tracks, reading packets from ``Track.packets``."""
        return self.process_demuxer(InMemoryDemuxer(tracks))

    def process_demuxer(self, demuxer: Demuxer) -> PipelineReport:
        """Select tracks from the demuxer and process each one independently."""
        report = PipelineReport()
        tracks = demuxer.list_tracks()
        if self.selector is not None:
            selected = self.selector.select_all(tracks)
        else:
            selected = [track for track in tracks if is_subtitle_codec(track)]

        if not selected:
            error = NoSubtitleTrackFound(f"No subtitle track among {len(tracks)} supplied tracks")
            self._record_track_failure(report, None, None, error)
            return report

        for track in selected:
            try:
                result = self.process_track(track, iter_packets(demuxer, track.track_id))
            except TrackError as e:
                self._record_track_failure(report, track.track_id, track.codec_id, e)
                continue
            report.tracks.append(result)

        return report

    def _record_track_failure(
        self, report: PipelineReport, track_id: int | None, codec_id: str | None, error: TrackError
    ) -> None:
        logger.error(f"Track {track_id} ({codec_id}) failed: {error.kind}: {error.reason}")
        report.track_failures.append(
            TrackFailure(track_id=track_id, codec_id=codec_id, kind=error.kind, reason=error.reason)
        )
        self._notify("on_track_failed", track_id, error.kind, error.reason)

    def process_track(self, track: Track, packets: Iterable[Packet] | None = None) -> TrackResult:
        """Run every event of one track to a terminal outcome.

        Raises:
            TrackError: If the track as a whole cannot be processed
        """
        packets = list(track.packets if packets is None else packets)
        track_format = classify(track.codec_id, packets[0] if packets else None)
        if not track_format.is_supported:
            raise UnsupportedCodec(track.codec_id, track.track_id)
        if track_format.family is CueFamily.BITMAP and self.recognizer is None:
            raise RecognitionUnavailable(
                f"Bitmap codec {track.codec_id} needs a recognition engine", track.track_id
            )

        try:
            drafts = CueBuilder(track, track_format).build(packets)
        except TrackError as e:
            e.track_id = track.track_id
            raise

        # Stable sort keeps packet order for equal start times.
        drafts.sort(key=lambda d: d.start_time)
        language = self._language_for(track)
        units = make_work_units(track.track_id, len(drafts), self.work_unit_size)
        logger.info(
            f"Track {track.track_id} ({track_format.codec.value}): "
            f"{len(drafts)} events in {len(units)} work units"
        )

        outcomes: list[RecognizedEvent | EventFailure] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="subtitle-event") as executor:
            for unit in units:
                futures = [
                    executor.submit(self._run_event, track.track_id, unit, index, drafts[index], language)
                    for index in unit.event_indices
                ]
                outcomes.extend(future.result() for future in futures)

        result = TrackResult(
            track_id=track.track_id,
            codec_id=track.codec_id,
            language=track.language,
            events=[o for o in outcomes if isinstance(o, RecognizedEvent)],
            failures=[o for o in outcomes if isinstance(o, EventFailure)],
        )
        logger.info(
            f"Track {track.track_id}: {len(result.events)} recognized, {len(result.failures)} failed"
        )
        self._notify("on_track_result", track.track_id, result.events)
        return result

    def _notify(self, method: str, *args) -> None:
        # Observer errors are logged; they never change an outcome.
        try:
            getattr(self.reporter, method)(*args)
        except Exception:
            logger.exception(f"Progress reporter {type(self.reporter).__name__}.{method} failed")

    def _language_for(self, track: Track) -> str:
        if track.language and track.language.lower() not in UNDETERMINED_LANGUAGES:
            return track.language
        return self.language

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _run_event(
        self, track_id: int, unit: WorkUnit, index: int, draft: CueDraft, language: str
    ) -> RecognizedEvent | EventFailure:
        outcome = self._process_event(track_id, unit, index, draft, language)
        if isinstance(outcome, EventFailure):
            self._notify("on_event_failed", unit.unit_id, index, outcome.kind, outcome.reason)
        unit.mark_completed(partial(self._notify, "on_unit_progress"))
        return outcome

    def _process_event(
        self, track_id: int, unit: WorkUnit, index: int, draft: CueDraft, language: str
    ) -> RecognizedEvent | EventFailure:
        run = EventRun(index)
        stage = Stage.CLASSIFY
        try:
            if draft.error is not None:
                if isinstance(draft.error, BitmapDecodeError):
                    stage = Stage.DECODE
                raise draft.error

            event = SubtitleEvent(index=index, start_time=draft.start_time, end_time=draft.end_time, cue=draft.cue)
            run.advance(EventState.CLASSIFIED)

            if isinstance(event.cue, TextCue):
                run.advance(EventState.SKIPPED)
                text = event.cue.text
                confidence = 1.0 if text else 0.0
            else:
                stage = Stage.DECODE
                raster = decode_bitmap(event.cue)
                run.advance(EventState.DECODED)

                stage = Stage.PREPROCESS
                image = preprocess(raster, self.preprocess_config)
                run.advance(EventState.PREPROCESSED)

                stage = Stage.RECOGNIZE
                text, confidence = self.recognizer.recognize(image, language)

            run.advance(EventState.RECOGNIZED)
            return RecognizedEvent(
                index=index,
                start_time=event.start_time,
                end_time=event.end_time,
                text=text,
                confidence=confidence,
            )
        except EventError as e:
            kind, reason = e.kind, e.reason
        except Exception as e:
            logger.exception(f"Unexpected error in track {track_id} event {index} at {stage.value}")
            kind, reason = INTERNAL_ERROR, f"{type(e).__name__}: {e}"

        run.advance(EventState.FAILED)
        logger.warning(f"Track {track_id} event {index} failed at {stage.value}: {kind}: {reason}")
        return EventFailure(
            track_id=track_id,
            unit_id=unit.unit_id,
            event_index=index,
            stage=stage,
            kind=kind,
            reason=reason,
        )
