"""Cancellable subprocess runner for the command-line collaborators (ffmpeg, yt-dlp, whisper.cpp).

All failures are translated into typed ``ClipCardsError`` subclasses: a
non-zero exit becomes ``ExternalToolError`` carrying the first 200 characters
of stderr, and a run killed through the ``CancelToken`` becomes
``CancelledError``.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Callable

from clipcards.cancel import CancelToken
from clipcards.errors import CancelledError, ExternalToolError, STDERR_EXCERPT_CHARS

logger = logging.getLogger(__name__)

# Seconds to wait after SIGTERM before escalating to SIGKILL.
TERMINATE_GRACE_S = 5.0


def run_tool(
    cmd: list[str],
    token: CancelToken | None = None,
    on_stdout_line: Callable[[str], None] | None = None,
) -> None:
    """Run *cmd* to completion, honouring *token*.

    Parameters
    ----------
    cmd:
        Full argument vector; ``cmd[0]`` names the tool in error messages.
    token:
        Cancellation token. Cancelling it terminates the process.
    on_stdout_line:
        Optional callable receiving each stdout line (used for progress
        parsing). When absent, stdout is discarded.

    Raises
    ------
    CancelledError
        If the token was cancelled before or during the run.
    ExternalToolError
        If the tool is missing or exits non-zero.
    """
    tool = Path(cmd[0]).name
    if token is not None:
        token.raise_if_cancelled(tool)

    logger.debug("running: %s", " ".join(cmd))

    # stderr goes to a temp file, never subprocess.PIPE: an unread pipe fills and deadlocks the child.
    with tempfile.TemporaryFile() as stderr_file:
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if on_stdout_line is not None else subprocess.DEVNULL,
                stderr=stderr_file,
                text=on_stdout_line is not None,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ExternalToolError(tool, None, f"{tool} not found or not executable: {exc}") from exc

        unregister = token.on_cancel(lambda: _terminate(process)) if token is not None else (lambda: None)
        try:
            if on_stdout_line is not None and process.stdout is not None:
                for line in process.stdout:
                    on_stdout_line(line.rstrip("\n"))
            returncode = process.wait()
        finally:
            unregister()

        if token is not None and token.cancelled:
            raise CancelledError(tool)

        if returncode != 0:
            stderr_file.seek(0)
            stderr = stderr_file.read(STDERR_EXCERPT_CHARS * 4).decode("utf-8", errors="replace")
            raise ExternalToolError(tool, returncode, stderr.strip())


def _terminate(process: subprocess.Popen) -> None:
    """Terminate *process* gracefully (SIGTERM → SIGKILL on timeout)."""
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_S)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
