"""Local whisper.cpp transcription: ffmpeg → 16 kHz WAV → whisper.cpp → SRT → normalizer."""
import logging
import shutil
from pathlib import Path
from typing import Optional

from clipcards.cancel import CancelToken
from clipcards.errors import ExternalToolError, TranscriptionError
from clipcards.ingestion.subtitles import parse_subtitle_file
from clipcards.media.ffmpeg import FFmpegExtractor
from clipcards.models import TimedSegment
from clipcards.process import run_tool

logger = logging.getLogger(__name__)

# Binary names used by whisper.cpp releases and distro packages, newest first.
WHISPER_BINARIES: tuple[str, ...] = ("whisper-cli", "whisper-cpp")


def find_whisper_binary() -> str:
    """Return the first whisper.cpp executable found on PATH.

    Raises ExternalToolError if none is installed.
    """
    for name in WHISPER_BINARIES:
        found = shutil.which(name)
        if found is not None:
            return found
    raise ExternalToolError(
        "whisper.cpp",
        None,
        f"none of {', '.join(WHISPER_BINARIES)} found in PATH",
    )


class LocalWhisperTranscriber:
    def __init__(
        self,
        model_size: str,
        models_dir: Path,
        extractor: Optional[FFmpegExtractor] = None,
        binary: Optional[str] = None,
    ) -> None:
        self.model_size = model_size
        self.models_dir = models_dir
        self.extractor = extractor if extractor is not None else FFmpegExtractor()
        self.binary = binary

    @property
    def model_path(self) -> Path:
        return self.models_dir / f"ggml-{self.model_size}.bin"

    def transcribe(
        self,
        video_path: Path,
        work_dir: Path,
        token: Optional[CancelToken] = None,
    ) -> list[TimedSegment]:
        if not self.model_path.exists():
            raise TranscriptionError(
                "whisper.cpp",
                f"model file not found: {self.model_path} (set CLIPCARDS_WHISPER_MODELS_DIR)",
            )
        binary = self.binary or find_whisper_binary()

        logger.info("Transcribing locally with whisper.cpp (model: %s)...", self.model_size)
        wav_path = self.extractor.convert_to_wav(video_path, work_dir / "audio.wav", token)

        output_base = work_dir / "whisper-out"
        run_tool(
            [
                binary,
                "-m", str(self.model_path),
                "-f", str(wav_path),
                "--output-srt",
                "--output-file", str(output_base),
            ],
            token,
        )

        srt_path = output_base.with_suffix(".srt")
        if not srt_path.exists():
            raise TranscriptionError("whisper.cpp", "whisper.cpp did not produce .srt output")
        return parse_subtitle_file(srt_path)
