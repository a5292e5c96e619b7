"""Demuxer interface consumed by the pipeline.

Container parsing lives outside this package. A demuxer only has to list its
subtitle tracks and hand out each track's packets in order.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator

from .models import Packet, Track


class Demuxer(ABC):
    """Supplier of subtitle tracks and their raw packets."""

    @abstractmethod
    def list_tracks(self) -> list[Track]:
        """Return the container's tracks. ``Track.packets`` may be empty."""
        ...

    @abstractmethod
    def next_packet(self, track_id: int) -> Packet | None:
        """Return the next packet of ``track_id``, or None at end of track."""
        ...


class InMemoryDemuxer(Demuxer):
    """Demuxer over already-extracted tracks, packets served from ``Track.packets``."""

    def __init__(self, tracks: Iterable[Track]):
        self._tracks = list(tracks)
        self._cursors = {track.track_id: iter(track.packets) for track in self._tracks}

    def list_tracks(self) -> list[Track]:
        return list(self._tracks)

    def next_packet(self, track_id: int) -> Packet | None:
        try:
            cursor = self._cursors[track_id]
        except KeyError:
            raise KeyError(f"Unknown track id: {track_id}") from None
        return next(cursor, None)


def iter_packets(demuxer: Demuxer, track_id: int) -> Iterator[Packet]:
    """Yield packets of one track until the demuxer reports end of track."""
    while (packet := demuxer.next_packet(track_id)) is not None:
        yield packet
