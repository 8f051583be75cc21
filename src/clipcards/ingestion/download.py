"""Video acquisition: yt-dlp download for URLs, workspace copy for local files.

yt-dlp is driven as an opaque command-line tool.  Its ``--newline`` progress
lines are parsed for the percentage and forwarded to the caller as a
fraction in [0, 1].
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Callable

from clipcards.cancel import CancelToken
from clipcards.errors import ExternalToolError, InputFileError
from clipcards.models import DownloadResult
from clipcards.process import run_tool

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS: frozenset[str] = frozenset({".mp4", ".mkv", ".webm", ".avi", ".mov"})
DOWNLOADED_SUBTITLE_EXTENSIONS: tuple[str, ...] = (".srt", ".vtt")

# Subtitle languages requested from yt-dlp, most preferred first.
SUBTITLE_LANGUAGES: tuple[str, ...] = ("en", "ko", "ja", "zh")

_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)%")


def is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def parse_progress_line(line: str) -> float | None:
    """Return the fraction (0..1) reported on a yt-dlp progress line, or None."""
    match = _PERCENT_RE.search(line)
    if match is None:
        return None
    return min(max(float(match.group(1)) / 100.0, 0.0), 1.0)


def download_video(
    url: str,
    dest_dir: Path,
    on_progress: Callable[[float], None] | None = None,
    token: CancelToken | None = None,
    ytdlp_bin: str = "yt-dlp",
) -> DownloadResult:
    """Download *url* (video plus any available subtitles) into *dest_dir*.

    Parameters
    ----------
    url:
        Video page URL understood by yt-dlp.
    dest_dir:
        Workspace directory; files are named ``<video id>.<ext>``.
    on_progress:
        Called with the download fraction in [0, 1] for each progress line.
    token:
        Cancellation token; cancelling kills yt-dlp.

    Returns
    -------
    DownloadResult
        The merged video file and the preferred subtitle file (if any).

    Raises
    ------
    ExternalToolError
        If yt-dlp fails or produces no video file.
    CancelledError
        If cancelled while downloading.
    """
    cmd = [
        ytdlp_bin,
        url,
        "-o", str(dest_dir / "%(id)s.%(ext)s"),
        "--write-subs",
        "--write-auto-subs",
        "--sub-langs", ",".join(SUBTITLE_LANGUAGES),
        "--sub-format", "srt/vtt/best",
        "--no-playlist",
        "--format", "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best",
        "--merge-output-format", "mp4",
        "--newline",
    ]

    def _on_line(line: str) -> None:
        fraction = parse_progress_line(line)
        if fraction is not None and on_progress is not None:
            on_progress(fraction)

    run_tool(cmd, token, on_stdout_line=_on_line)
    return find_downloaded_files(dest_dir)


def find_downloaded_files(dest_dir: Path) -> DownloadResult:
    """Locate the downloaded video and the preferred subtitle file in *dest_dir*."""
    files = sorted(p for p in dest_dir.iterdir() if p.is_file())
    videos = [p for p in files if p.suffix.lower() in VIDEO_EXTENSIONS]
    if not videos:
        raise ExternalToolError("yt-dlp", 0, "download finished but no video file was found")

    subtitles = [p for p in files if p.suffix.lower() in DOWNLOADED_SUBTITLE_EXTENSIONS]
    subtitle = min(subtitles, key=_subtitle_rank) if subtitles else None

    logger.debug("downloaded video=%s subtitle=%s", videos[0].name, subtitle.name if subtitle else None)
    return DownloadResult(video_path=videos[0], subtitle_path=subtitle)


def copy_local_input(source: Path, dest_dir: Path) -> Path:
    """Copy a local video into the workspace as ``input.<ext>`` and return the copy.

    Raises InputFileError if the source cannot be read or copied.
    """
    suffix = source.suffix or ".mp4"
    dest = dest_dir / f"input{suffix}"
    try:
        shutil.copyfile(source, dest)
    except OSError as exc:
        raise InputFileError(source, str(exc)) from exc
    return dest


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _subtitle_rank(path: Path) -> tuple[int, int, str]:
    """Sort key: preferred language first, then SRT before VTT, then name.

    yt-dlp names subtitles ``<id>.<lang>.<ext>``.
    """
    parts = path.name.split(".")
    lang = parts[-2] if len(parts) >= 3 else ""
    lang_rank = SUBTITLE_LANGUAGES.index(lang) if lang in SUBTITLE_LANGUAGES else len(SUBTITLE_LANGUAGES)
    ext_rank = DOWNLOADED_SUBTITLE_EXTENSIONS.index(path.suffix.lower())
    return lang_rank, ext_rank, path.name
