"""Transcript source priority chain: user subtitle > downloaded subtitle > transcription."""
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from clipcards.ingestion.subtitles import parse_subtitle_file
from clipcards.models import TimedSegment

SOURCE_USER = "user_subtitle"
SOURCE_EMBEDDED = "embedded_subtitle"
SOURCE_TRANSCRIPTION = "transcription"


@dataclass
class TranscriptChoice:
    source: str                     # SOURCE_USER | SOURCE_EMBEDDED | SOURCE_TRANSCRIPTION
    segments: list[TimedSegment]


def select_transcript(
    user_subtitle: Optional[Path],
    embedded_subtitle: Optional[Path],
    transcribe: Callable[[], list[TimedSegment]],
    parse: Callable[[Path], list[TimedSegment]] = parse_subtitle_file,
) -> TranscriptChoice:
    """Return segments from exactly one source, in fixed priority order.

    A lower-priority source is consulted only when every higher-priority
    source is *absent*.  A present source that yields zero segments is
    returned as-is; deciding that an empty transcript is fatal belongs to
    the caller.
    """
    if user_subtitle is not None:
        return TranscriptChoice(SOURCE_USER, parse(user_subtitle))
    if embedded_subtitle is not None:
        return TranscriptChoice(SOURCE_EMBEDDED, parse(embedded_subtitle))
    return TranscriptChoice(SOURCE_TRANSCRIPTION, transcribe())
