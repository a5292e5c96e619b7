"""Work units: contiguous batches of events with thread-safe progress counters."""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import DEFAULT_WORK_UNIT_SIZE

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class WorkUnit:
    """A contiguous run of event indices tracked together for progress reporting.

    ``completed`` is only changed through ``mark_completed``, which serializes
    increments and notifies under the same lock so observers see counts in
    non-decreasing order.
    """

    unit_id: str
    event_indices: range
    completed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def expected(self) -> int:
        return len(self.event_indices)

    @property
    def is_complete(self) -> bool:
        return self.completed >= self.expected

    def mark_completed(self, on_progress: ProgressCallback | None = None) -> int:
        """Count one more terminal event and return the new completed count."""
        with self._lock:
            if self.completed >= self.expected:
                raise RuntimeError(f"Work unit {self.unit_id} already has {self.expected} terminal events")
            self.completed += 1
            if on_progress is not None:
                on_progress(self.unit_id, self.completed, self.expected)
            return self.completed


def make_work_units(track_id: int, event_count: int, unit_size: int = DEFAULT_WORK_UNIT_SIZE) -> list[WorkUnit]:
    """Split ``event_count`` events, in timestamp order, into fixed-size contiguous units.

    Unit ids are ``"<track_id>:<n>"``; the last unit holds the remainder.
    """
    if unit_size < 1:
        raise ValueError(f"Work unit size must be at least 1, got {unit_size}")
    return [
        WorkUnit(unit_id=f"{track_id}:{n}", event_indices=range(start, min(start + unit_size, event_count)))
        for n, start in enumerate(range(0, event_count, unit_size))
    ]
