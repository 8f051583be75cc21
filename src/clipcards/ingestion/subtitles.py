"""Caption normalizer: SRT, WebVTT and ASS/SSA into ordered TimedSegments.

Parsing is delegated to pysubs2.  Non-UTF-8 files are detected with
charset-normalizer before decoding; if encoding detection also fails,
``FormatError`` is raised with a human-readable message rather than
silently dropping cues.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from pathlib import Path

import pysubs2
from charset_normalizer import from_bytes

from clipcards.errors import FormatError
from clipcards.models import TimedSegment

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset({".srt", ".vtt", ".ass", ".ssa"})

# Extension -> pysubs2 format identifier.  Anything else is autodetected.
_FORMAT_BY_EXTENSION: dict[str, str] = {
    ".srt": "srt",
    ".vtt": "vtt",
    ".ass": "ass",
    ".ssa": "ssa",
}

# WebVTT karaoke timestamps (<00:00:01.199>) look like cue timings to the SRT-family parser.
_INLINE_TIMESTAMP_RE = re.compile(r"<\d{1,2}:\d{2}:\d{2}[.,]\d{1,3}>")
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_OVERRIDE_BLOCK_RE = re.compile(r"\{[^}]*\}")
_WHITESPACE_RE = re.compile(r"\s+")
# WebVTT comment, style and region blocks; pysubs2 folds their lines into the previous cue.
_VTT_BLOCK_SPLIT_RE = re.compile(r"\n[ \t]*\n")
_VTT_NON_CUE_BLOCK_RE = re.compile(r"(?:NOTE|STYLE|REGION)(?:\s|$)")


def clean_cue_text(text: str) -> str:
    """Strip inline markup and newlines from a cue, collapsing whitespace."""
    text = _HTML_TAG_RE.sub("", text)
    text = _OVERRIDE_BLOCK_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def merge_duplicate_cues(segments: list[TimedSegment]) -> list[TimedSegment]:
    """Merge consecutive segments with identical text and renumber from 0.

    The merged segment keeps the earlier segment's start and takes the later
    segment's end time.  Auto-generated captions repeat the same line across
    several cues; this collapses them.  Running it twice is a no-op.
    """
    merged: list[TimedSegment] = []
    for segment in segments:
        if merged and merged[-1].text == segment.text:
            merged[-1] = dataclasses.replace(merged[-1], end_time=segment.end_time)
        else:
            merged.append(dataclasses.replace(segment, index=len(merged)))
    return merged


def normalize_captions(
    content: str,
    format_hint: str | None = None,
    source: str = "<captions>",
) -> list[TimedSegment]:
    """Parse caption *content* into ordered, deduplicated :class:`TimedSegment` objects.

    Parameters
    ----------
    content:
        Decoded caption file content.
    format_hint:
        File extension (``".srt"``, ``"vtt"``, ...).  Unknown or missing hints
        fall back to pysubs2 format autodetection.
    source:
        Label used in error messages.

    Returns
    -------
    list[TimedSegment]
        Chronologically ordered segments with dense 0-based indices.
        Comment events, cues with no visible text, and zero-length cues are
        skipped.

    Raises
    ------
    FormatError
        If the content is not any supported caption dialect.
    """
    subs = _load_from_string(content, format_hint, source)

    cues: list[tuple[int, int, str]] = []
    for event in subs:
        if event.is_comment:
            continue
        text = clean_cue_text(event.plaintext)
        if not text:
            continue
        if event.end <= event.start:
            logger.debug("skipping zero-length cue at %dms in %s", event.start, source)
            continue
        cues.append((event.start, event.end, text))

    # sorted() is stable: cues sharing a start time keep file order.
    cues.sort(key=lambda cue: cue[0])

    segments = [
        TimedSegment(index=i, start_time=start / 1000.0, end_time=end / 1000.0, text=text)
        for i, (start, end, text) in enumerate(cues)
    ]
    return merge_duplicate_cues(segments)


def parse_subtitle_file(subtitle_path: Path) -> list[TimedSegment]:
    """Read *subtitle_path* (any supported dialect and encoding) and normalize it.

    Raises
    ------
    FormatError
        If the file cannot be read, its encoding cannot be determined, or
        its content is not a supported caption dialect.
    """
    try:
        raw = subtitle_path.read_bytes()
    except OSError as exc:
        raise FormatError(subtitle_path.name, str(exc)) from exc

    content = _decode_with_encoding_fallback(raw, subtitle_path.name)
    return normalize_captions(content, subtitle_path.suffix, subtitle_path.name)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _format_for_hint(format_hint: str | None) -> str | None:
    if not format_hint:
        return None
    ext = format_hint.lower()
    if not ext.startswith("."):
        ext = "." + ext
    return _FORMAT_BY_EXTENSION.get(ext)


def _load_from_string(content: str, format_hint: str | None, source: str) -> pysubs2.SSAFile:
    content = _INLINE_TIMESTAMP_RE.sub("", content.lstrip("\ufeff"))
    format_ = _format_for_hint(format_hint)
    if format_ == "vtt" or content.lstrip().startswith("WEBVTT"):
        content = _drop_vtt_non_cue_blocks(content)
    try:
        return pysubs2.SSAFile.from_string(content, format_=format_)
    except Exception as exc:
        raise FormatError(source, f"{type(exc).__name__}: {exc}") from exc


def _drop_vtt_non_cue_blocks(content: str) -> str:
    blocks = _VTT_BLOCK_SPLIT_RE.split(content.replace("\r\n", "\n"))
    kept = [b for b in blocks if not _VTT_NON_CUE_BLOCK_RE.match(b.lstrip("\n"))]
    return "\n\n".join(kept)


def _decode_with_encoding_fallback(raw: bytes, source: str) -> str:
    """Decode *raw* as UTF-8, falling back to charset-normalizer detection."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass

    best = from_bytes(raw).best()
    if best is None:
        raise FormatError(source, "Could not determine file encoding. Re-save as UTF-8.")
    logger.debug("decoding %s as %s", source, best.encoding)
    return str(best)
