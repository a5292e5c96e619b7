"""Serialization helpers for recognized events (caller-side persistence)."""

import json
from collections.abc import Iterable
from pathlib import Path

from .models import RecognizedEvent


def write_events_jsonl(events: Iterable[RecognizedEvent], path: Path) -> int:
    """Write one JSON object per line. Returns the number of events written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8") as f:
        for event in events:
            json.dump(event.model_dump(), f, ensure_ascii=False)
            f.write("\n")
            count += 1
    return count


def read_events_jsonl(path: Path) -> list[RecognizedEvent]:
    """Read events written by ``write_events_jsonl``; blank lines are skipped."""
    with path.open(encoding="utf-8") as f:
        return [RecognizedEvent.model_validate_json(line) for line in f if line.strip()]


def format_timestamp(ms: int) -> str:
    """SRT timestamp ``HH:MM:SS,mmm``."""
    ms = max(0, ms)
    hours, ms = divmod(ms, 3_600_000)
    minutes, ms = divmod(ms, 60_000)
    seconds, ms = divmod(ms, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{ms:03d}"


def format_srt(events: Iterable[RecognizedEvent]) -> str:
    """Render events with text as SubRip, numbered from 1 in the given order."""
    blocks = []
    for number, event in enumerate((e for e in events if e.text), start=1):
        blocks.append(
            f"{number}\n{format_timestamp(event.start_time)} --> {format_timestamp(event.end_time)}\n{event.text}\n"
        )
    return "\n".join(blocks)
