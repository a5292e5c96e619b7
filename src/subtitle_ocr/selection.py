"""Track selection by caller-supplied predicate.

Usage:
    selector = TrackSelector(all_of(is_known_subtitle_codec, by_language("eng")))
    track = selector.select(demuxer.list_tracks())
"""

from collections.abc import Callable, Iterable

from .classifier import classify
from .errors import NoSubtitleTrackFound
from .models import CueFamily, Track

TrackPredicate = Callable[[Track], bool]


def is_subtitle_codec(track: Track) -> bool:
    """Matroska subtitle codec ids all start with ``S_``."""
    return track.codec_id.startswith("S_") or is_known_subtitle_codec(track)


def is_known_subtitle_codec(track: Track) -> bool:
    """True when the codec is a text or bitmap format this package decodes."""
    return classify(track.codec_id).is_supported


def by_language(*languages: str) -> TrackPredicate:
    wanted = {language.lower() for language in languages}

    def predicate(track: Track) -> bool:
        return track.language is not None and track.language.lower() in wanted

    return predicate


def by_track_id(*track_ids: int) -> TrackPredicate:
    wanted = set(track_ids)

    def predicate(track: Track) -> bool:
        return track.track_id in wanted

    return predicate


def by_codec_family(family: CueFamily) -> TrackPredicate:
    def predicate(track: Track) -> bool:
        return classify(track.codec_id).family is family

    return predicate


def all_of(*predicates: TrackPredicate) -> TrackPredicate:
    def predicate(track: Track) -> bool:
        return all(p(track) for p in predicates)

    return predicate


def any_of(*predicates: TrackPredicate) -> TrackPredicate:
    def predicate(track: Track) -> bool:
        return any(p(track) for p in predicates)

    return predicate


class TrackSelector:
    """Selects tracks of interest with an explicit predicate.

    The default predicate keeps tracks whose codec is a known subtitle codec.
    """

    def __init__(self, predicate: TrackPredicate = is_known_subtitle_codec):
        self.predicate = predicate

    def select(self, tracks: Iterable[Track]) -> Track:
        """Return the first matching track.

        Raises:
            NoSubtitleTrackFound: If no track matches
        """
        for track in tracks:
            if self.predicate(track):
                return track
        raise NoSubtitleTrackFound("No track matched the selection rule")

    def select_all(self, tracks: Iterable[Track]) -> list[Track]:
        """Return every matching track, in supplied order. May be empty."""
        return [track for track in tracks if self.predicate(track)]
