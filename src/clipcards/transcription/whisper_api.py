"""Hosted Whisper API transcription (OpenAI-compatible /audio/transcriptions)."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests
from pydantic import TypeAdapter, ValidationError

from clipcards.cancel import CancelToken
from clipcards.errors import TranscriptionError
from clipcards.ingestion.subtitles import clean_cue_text, merge_duplicate_cues
from clipcards.media.ffmpeg import FFmpegExtractor
from clipcards.models import TimedSegment

logger = logging.getLogger(__name__)

WHISPER_API_MODEL = "whisper-1"


@dataclass
class WhisperSegment:
    start: float
    end: float
    text: str


@dataclass
class WhisperVerboseResponse:
    segments: list[WhisperSegment]


_adapter: TypeAdapter[WhisperVerboseResponse] = TypeAdapter(WhisperVerboseResponse)


def segments_from_response(data: dict) -> list[TimedSegment]:
    """Convert a ``verbose_json`` transcription payload into TimedSegments.

    Empty and zero-length segments are skipped; repeated lines are merged
    exactly as for caption files.

    Raises pydantic.ValidationError if the payload has no usable segment list.
    """
    response = _adapter.validate_python(data)
    segments: list[TimedSegment] = []
    for seg in sorted(response.segments, key=lambda s: s.start):
        text = clean_cue_text(seg.text)
        if not text or seg.end <= seg.start:
            continue
        segments.append(
            TimedSegment(index=len(segments), start_time=max(0.0, seg.start), end_time=seg.end, text=text)
        )
    return merge_duplicate_cues(segments)


class RemoteWhisperTranscriber:
    """Uploads the video's audio track to a hosted Whisper endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = WHISPER_API_MODEL,
        extractor: Optional[FFmpegExtractor] = None,
        timeout_s: float = 600.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.extractor = extractor if extractor is not None else FFmpegExtractor()
        self.timeout_s = timeout_s

    def transcribe(
        self,
        video_path: Path,
        work_dir: Path,
        token: Optional[CancelToken] = None,
    ) -> list[TimedSegment]:
        if not self.api_key:
            raise TranscriptionError("whisper-api", "API key not configured (set OPENAI_API_KEY)")

        audio_path = self.extractor.convert_to_mp3(video_path, work_dir / "audio.mp3", token)
        if token is not None:
            token.raise_if_cancelled("transcription")

        logger.info("Transcribing with hosted Whisper API (%s)...", self.model)
        try:
            with open(audio_path, "rb") as fh:
                r = requests.post(
                    f"{self.base_url}/audio/transcriptions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data={
                        "model": self.model,
                        "response_format": "verbose_json",
                        "timestamp_granularities[]": "segment",
                    },
                    files={"file": (audio_path.name, fh, "audio/mpeg")},
                    timeout=self.timeout_s,
                )
            r.raise_for_status()
            return segments_from_response(r.json())
        except requests.RequestException as exc:
            raise TranscriptionError("whisper-api", str(exc)) from exc
        except (ValueError, ValidationError) as exc:
            raise TranscriptionError("whisper-api", f"Unexpected response: {exc}") from exc
