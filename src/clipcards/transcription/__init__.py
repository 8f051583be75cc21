"""Transcription fallback: used when neither a user nor a downloaded subtitle exists."""
import logging
from pathlib import Path
from typing import Optional, Protocol

from clipcards.cancel import CancelToken
from clipcards.config import Settings, get_whisper_models_dir
from clipcards.models import TimedSegment

_logger = logging.getLogger("clipcards")


class Transcriber(Protocol):
    def transcribe(
        self,
        video_path: Path,
        work_dir: Path,
        token: Optional[CancelToken] = None,
    ) -> list[TimedSegment]: ...


def get_transcriber(settings: Settings) -> Transcriber:
    """Build the transcriber selected by ``settings.transcription``.

    Uses lazy imports so only the chosen engine's module is loaded.
    """
    mode = settings.transcription
    if mode == "remote":
        from clipcards.transcription.whisper_api import RemoteWhisperTranscriber

        transcriber: Transcriber = RemoteWhisperTranscriber(
            api_key=settings.resolved_api_key(),
            base_url=settings.hosted_base_url,
        )
    elif mode == "local":
        from clipcards.transcription.whisper_local import LocalWhisperTranscriber

        transcriber = LocalWhisperTranscriber(
            model_size=settings.whisper_model_size,
            models_dir=get_whisper_models_dir(),
        )
    else:
        raise ValueError(f"Unknown transcription mode: {mode!r}. Valid options: remote, local")

    _logger.info("Transcription engine: %s", type(transcriber).__name__)
    return transcriber
