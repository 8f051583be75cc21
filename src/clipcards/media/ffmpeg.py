"""FFmpegExtractor: every ffmpeg invocation ClipCards makes.

One ffmpeg process per call; each call honours the run's CancelToken and
raises ExternalToolError with a stderr excerpt on failure.
"""
import logging
from pathlib import Path
from typing import Optional, Protocol

from clipcards.cancel import CancelToken
from clipcards.process import run_tool

logger = logging.getLogger(__name__)


class MediaExtractor(Protocol):
    """Capability used by the media phase: one clip or one frame per call."""

    def extract_audio(
        self,
        source: Path,
        start_s: float,
        duration_s: float,
        output_path: Path,
        token: Optional[CancelToken] = None,
    ) -> None: ...

    def extract_image(
        self,
        source: Path,
        timestamp_s: float,
        output_path: Path,
        token: Optional[CancelToken] = None,
    ) -> None: ...


class FFmpegExtractor:
    """ffmpeg-backed MediaExtractor plus whole-file audio conversions for transcription."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg") -> None:
        self.ffmpeg_bin = ffmpeg_bin

    def _base(self) -> list[str]:
        # -loglevel error keeps stderr to the actual failure so the excerpt is useful.
        return [self.ffmpeg_bin, "-hide_banner", "-loglevel", "error", "-y"]

    def extract_audio(
        self,
        source: Path,
        start_s: float,
        duration_s: float,
        output_path: Path,
        token: Optional[CancelToken] = None,
    ) -> None:
        """Cut [start_s, start_s + duration_s] and re-encode to MP3 (libmp3lame VBR q4).

        Uses -ss before -i for fast input seeking; ffmpeg stops at end-of-file
        when the requested window runs past it.
        """
        cmd = self._base() + [
            "-ss", f"{start_s:.3f}",
            "-i", str(source),
            "-t", f"{duration_s:.3f}",
            "-vn",
            "-acodec", "libmp3lame",
            "-q:a", "4",
            str(output_path),
        ]
        run_tool(cmd, token)

    def extract_image(
        self,
        source: Path,
        timestamp_s: float,
        output_path: Path,
        token: Optional[CancelToken] = None,
    ) -> None:
        """Extract a single JPEG frame at *timestamp_s*."""
        cmd = self._base() + [
            "-ss", f"{timestamp_s:.3f}",
            "-i", str(source),
            "-frames:v", "1",
            "-q:v", "3",
            str(output_path),
        ]
        run_tool(cmd, token)

    def convert_to_mp3(self, source: Path, output_path: Path, token: Optional[CancelToken] = None) -> Path:
        """Extract the full audio track as MP3 (upload format for the Whisper API)."""
        cmd = self._base() + [
            "-i", str(source),
            "-vn",
            "-acodec", "libmp3lame",
            "-q:a", "4",
            str(output_path),
        ]
        run_tool(cmd, token)
        return output_path

    def convert_to_wav(
        self,
        source: Path,
        output_path: Path,
        token: Optional[CancelToken] = None,
        sample_rate: int = 16000,
    ) -> Path:
        """Convert to mono 16-bit PCM WAV (the input format whisper.cpp requires)."""
        cmd = self._base() + [
            "-i", str(source),
            "-ar", str(sample_rate),
            "-ac", "1",
            "-c:a", "pcm_s16le",
            str(output_path),
        ]
        run_tool(cmd, token)
        return output_path
