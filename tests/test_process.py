"""Tests for the cancellable subprocess runner and the cancellation token.

The runner tests launch the current Python interpreter as a stand-in tool so
that real process termination is exercised without ffmpeg or yt-dlp.
"""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from clipcards.cancel import CancelToken
from clipcards.errors import STDERR_EXCERPT_CHARS, CancelledError, ExternalToolError
from clipcards.process import run_tool

_PY = sys.executable
_TOOL = Path(_PY).name


class TestRunTool:
    def test_success_streams_stdout_lines(self) -> None:
        lines: list[str] = []
        run_tool([_PY, "-c", "print('10.0%'); print('100%')"], on_stdout_line=lines.append)
        assert lines == ["10.0%", "100%"]

    def test_nonzero_exit_raises_with_stderr_excerpt(self) -> None:
        with pytest.raises(ExternalToolError) as exc_info:
            run_tool([_PY, "-c", "import sys; sys.stderr.write('boom: invalid input'); sys.exit(3)"])
        err = exc_info.value
        assert err.tool == _TOOL
        assert err.returncode == 3
        assert "boom: invalid input" in err.detail

    def test_stderr_truncated(self) -> None:
        with pytest.raises(ExternalToolError) as exc_info:
            run_tool([_PY, "-c", "import sys; sys.stderr.write('x' * 5000); sys.exit(1)"])
        assert len(exc_info.value.detail) == STDERR_EXCERPT_CHARS

    def test_missing_binary(self, tmp_path: Path) -> None:
        with pytest.raises(ExternalToolError) as exc_info:
            run_tool([str(tmp_path / "no-such-tool")])
        assert exc_info.value.returncode is None
        assert "could not be started" in str(exc_info.value)

    def test_cancel_terminates_running_process(self) -> None:
        token = CancelToken()
        timer = threading.Timer(0.3, token.cancel)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(CancelledError):
                run_tool([_PY, "-c", "import time; time.sleep(30)"], token)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 15

    def test_precancelled_token_never_spawns(self) -> None:
        token = CancelToken()
        token.cancel()
        with patch("clipcards.process.subprocess.Popen") as mock_popen:
            with pytest.raises(CancelledError):
                run_tool(["ffmpeg", "-version"], token)
        mock_popen.assert_not_called()

    def test_callback_unregistered_after_exit(self) -> None:
        token = CancelToken()
        run_tool([_PY, "-c", "pass"], token)
        assert token._callbacks == {}


class TestCancelToken:
    def test_callbacks_run_once(self) -> None:
        token = CancelToken()
        callback = MagicMock()
        token.on_cancel(callback)
        token.cancel()
        token.cancel()
        callback.assert_called_once()
        assert token.cancelled

    def test_register_after_cancel_runs_immediately(self) -> None:
        token = CancelToken()
        token.cancel()
        callback = MagicMock()
        token.on_cancel(callback)
        callback.assert_called_once()

    def test_unregister(self) -> None:
        token = CancelToken()
        callback = MagicMock()
        unregister = token.on_cancel(callback)
        unregister()
        token.cancel()
        callback.assert_not_called()

    def test_failing_callback_does_not_block_others(self) -> None:
        token = CancelToken()
        second = MagicMock()
        token.on_cancel(MagicMock(side_effect=OSError("no such process")))
        token.on_cancel(second)
        token.cancel()
        second.assert_called_once()

    def test_raise_if_cancelled(self) -> None:
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(CancelledError) as exc_info:
            token.raise_if_cancelled("download")
        assert exc_info.value.where == "download"

    def test_wait_wakes_on_cancel(self) -> None:
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(10) is True
        assert CancelToken().wait(0.01) is False
