"""Text subtitle payload decoding and markup stripping."""

import html
import re

from .errors import TextDecodeError
from .models import SubtitleCodec

_HTML_TAG = re.compile(r"</?[A-Za-z][^<>]*>")
_BRACE_OVERRIDE = re.compile(r"\{\\[^{}]*\}")
_ASS_OVERRIDE = re.compile(r"\{[^{}]*\}")
_ASS_DRAWING = re.compile(r"\{[^{}]*\\p[1-9][^{}]*\}.*?(?=\{[^{}]*\\p0[^{}]*\}|$)", re.DOTALL)
_VTT_TIMESTAMP = re.compile(r"<\d{1,2}:\d{2}(?::\d{2})?\.\d{3}>")
_VTT_TAG = re.compile(r"</?(?:c|i|b|u|v|lang|ruby|rt)(?:[.\s][^<>]*)?>")
_SPACES = re.compile(r"[ \t]+")

# Matroska ASS/SSA blocks: ReadOrder, Layer, Style, Name, MarginL, MarginR, MarginV, Effect, Text
_ASS_BLOCK_FIELDS = 9
# .ass Dialogue lines: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text
_ASS_DIALOGUE_FIELDS = 10


def decode_payload(payload: bytes) -> str:
    """Decode a text packet as UTF-8, dropping a leading BOM.

    Raises:
        TextDecodeError: If the payload is not valid UTF-8
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TextDecodeError(f"Payload is not valid UTF-8: {e}") from e
    return text.removeprefix("\ufeff")


def _tidy(text: str) -> str:
    lines = (_SPACES.sub(" ", line).strip() for line in text.replace("\r\n", "\n").split("\n"))
    return "\n".join(line for line in lines if line)


def strip_subrip(text: str) -> str:
    """Strip SubRip HTML-like tags and stray ``{\\...}`` overrides, decode entities."""
    text = _BRACE_OVERRIDE.sub("", text)
    text = _HTML_TAG.sub("", text)
    return _tidy(html.unescape(text))


def ass_dialogue_text(line: str) -> str:
    """Pull the Text field out of a Matroska ASS block or a Dialogue line."""
    stripped = line.strip()
    if stripped.lower().startswith("dialogue:"):
        fields = stripped.split(":", 1)[1].split(",", _ASS_DIALOGUE_FIELDS - 1)
        expected = _ASS_DIALOGUE_FIELDS
    else:
        fields = stripped.split(",", _ASS_BLOCK_FIELDS - 1)
        expected = _ASS_BLOCK_FIELDS
    if len(fields) < expected:
        # Not a structured event line; treat it all as text.
        return stripped
    return fields[-1]


def strip_ass(text: str) -> str:
    """Strip ASS/SSA override blocks and drawings, expand ``\\N``, ``\\n`` and ``\\h``."""
    text = ass_dialogue_text(text)
    text = _ASS_DRAWING.sub("", text)
    text = _ASS_OVERRIDE.sub("", text)
    text = text.replace("\\N", "\n").replace("\\n", "\n").replace("\\h", " ")
    return _tidy(text)


def strip_webvtt(text: str) -> str:
    """Strip WebVTT cue tags and inline timestamps, decode entities."""
    text = _VTT_TIMESTAMP.sub("", text)
    text = _VTT_TAG.sub("", text)
    text = _HTML_TAG.sub("", text)
    return _tidy(html.unescape(text))


_STRIPPERS = {
    SubtitleCodec.SUBRIP: strip_subrip,
    SubtitleCodec.SSA: strip_ass,
    SubtitleCodec.ASS: strip_ass,
    SubtitleCodec.WEBVTT: strip_webvtt,
}


def cue_text(payload: bytes, codec: SubtitleCodec) -> str:
    """Decode a text packet and strip its formatting markup.

    Raises:
        TextDecodeError: If the payload cannot be decoded
        ValueError: If ``codec`` is not a text codec
    """
    try:
        stripper = _STRIPPERS[codec]
    except KeyError:
        raise ValueError(f"{codec} is not a text subtitle codec") from None
    return stripper(decode_payload(payload))
