"""Tests for the transcription fallback engines (clipcards.transcription).

ffmpeg is replaced with a MagicMock extractor, HTTP with a patched
``requests.post`` and whisper.cpp with a patched ``run_tool``.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests
from pydantic import ValidationError

from clipcards.config import Settings
from clipcards.errors import ExternalToolError, TranscriptionError
from clipcards.models import TimedSegment
from clipcards.transcription import get_transcriber
from clipcards.transcription.whisper_api import RemoteWhisperTranscriber, segments_from_response
from clipcards.transcription.whisper_local import LocalWhisperTranscriber, find_whisper_binary

_VERBOSE_JSON = {
    "text": "Hello there. Hello there. General Kenobi.",
    "segments": [
        {"id": 0, "start": 0.0, "end": 1.2, "text": " Hello there."},
        {"id": 1, "start": 1.2, "end": 2.0, "text": " Hello there."},
        {"id": 2, "start": 2.5, "end": 4.0, "text": " General Kenobi."},
        {"id": 3, "start": 4.0, "end": 4.5, "text": "   "},
    ],
}


def _fake_extractor() -> MagicMock:
    extractor = MagicMock()

    def _write(source, output_path, token=None):
        output_path.write_bytes(b"audio")
        return output_path

    extractor.convert_to_mp3.side_effect = _write
    extractor.convert_to_wav.side_effect = _write
    return extractor


class TestSegmentsFromResponse:
    def test_segments_cleaned_and_merged(self) -> None:
        segments = segments_from_response(_VERBOSE_JSON)
        assert segments == [
            TimedSegment(index=0, start_time=0.0, end_time=2.0, text="Hello there."),
            TimedSegment(index=1, start_time=2.5, end_time=4.0, text="General Kenobi."),
        ]

    def test_missing_segments_rejected(self) -> None:
        with pytest.raises(ValidationError):
            segments_from_response({"text": "no segments"})


class TestRemoteWhisperTranscriber:
    def test_uploads_mp3_and_parses_segments(self, tmp_path: Path) -> None:
        extractor = _fake_extractor()
        transcriber = RemoteWhisperTranscriber(api_key="sk-test", extractor=extractor)
        response = MagicMock()
        response.json.return_value = _VERBOSE_JSON

        with patch("clipcards.transcription.whisper_api.requests.post", return_value=response) as mock_post:
            segments = transcriber.transcribe(tmp_path / "video.mp4", tmp_path)

        assert len(segments) == 2
        extractor.convert_to_mp3.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.openai.com/v1/audio/transcriptions"
        assert kwargs["data"]["model"] == "whisper-1"
        assert kwargs["data"]["response_format"] == "verbose_json"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["files"]["file"][0] == "audio.mp3"

    def test_missing_key(self, tmp_path: Path) -> None:
        extractor = _fake_extractor()
        with pytest.raises(TranscriptionError):
            RemoteWhisperTranscriber(api_key=None, extractor=extractor).transcribe(tmp_path / "v.mp4", tmp_path)
        extractor.convert_to_mp3.assert_not_called()

    def test_http_failure(self, tmp_path: Path) -> None:
        transcriber = RemoteWhisperTranscriber(api_key="sk-test", extractor=_fake_extractor())
        with patch(
            "clipcards.transcription.whisper_api.requests.post",
            side_effect=requests.ConnectionError("connection reset"),
        ):
            with pytest.raises(TranscriptionError) as exc_info:
                transcriber.transcribe(tmp_path / "v.mp4", tmp_path)
        assert exc_info.value.engine == "whisper-api"


class TestLocalWhisperTranscriber:
    def test_runs_whisper_cpp_and_parses_srt(self, tmp_path: Path) -> None:
        models = tmp_path / "models"
        models.mkdir()
        (models / "ggml-base.bin").write_bytes(b"model")
        extractor = _fake_extractor()

        def _fake_run(cmd, token=None):
            out_base = Path(cmd[cmd.index("--output-file") + 1])
            out_base.with_suffix(".srt").write_text(
                "1\n00:00:00,000 --> 00:00:01,500\n Bonjour.\n\n", encoding="utf-8"
            )

        transcriber = LocalWhisperTranscriber("base", models, extractor=extractor, binary="whisper-cli")
        with patch("clipcards.transcription.whisper_local.run_tool", side_effect=_fake_run) as mock_run:
            segments = transcriber.transcribe(tmp_path / "v.mp4", tmp_path)

        assert segments == [TimedSegment(index=0, start_time=0.0, end_time=1.5, text="Bonjour.")]
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "whisper-cli"
        assert cmd[cmd.index("-m") + 1] == str(models / "ggml-base.bin")
        assert cmd[cmd.index("-f") + 1] == str(tmp_path / "audio.wav")
        assert "--output-srt" in cmd

    def test_missing_model(self, tmp_path: Path) -> None:
        transcriber = LocalWhisperTranscriber("large", tmp_path, extractor=_fake_extractor(), binary="whisper-cli")
        with pytest.raises(TranscriptionError) as exc_info:
            transcriber.transcribe(tmp_path / "v.mp4", tmp_path)
        assert "ggml-large.bin" in str(exc_info.value)

    def test_no_srt_output(self, tmp_path: Path) -> None:
        (tmp_path / "ggml-base.bin").write_bytes(b"model")
        transcriber = LocalWhisperTranscriber("base", tmp_path, extractor=_fake_extractor(), binary="whisper-cli")
        with patch("clipcards.transcription.whisper_local.run_tool"):
            with pytest.raises(TranscriptionError):
                transcriber.transcribe(tmp_path / "v.mp4", tmp_path)


class TestFindWhisperBinary:
    def test_prefers_whisper_cli(self) -> None:
        with patch("clipcards.transcription.whisper_local.shutil.which", side_effect=lambda n: f"/usr/bin/{n}"):
            assert find_whisper_binary() == "/usr/bin/whisper-cli"

    def test_falls_back_to_whisper_cpp(self) -> None:
        found = {"whisper-cpp": "/opt/bin/whisper-cpp"}
        with patch("clipcards.transcription.whisper_local.shutil.which", side_effect=found.get):
            assert find_whisper_binary() == "/opt/bin/whisper-cpp"

    def test_not_installed(self) -> None:
        with patch("clipcards.transcription.whisper_local.shutil.which", return_value=None):
            with pytest.raises(ExternalToolError) as exc_info:
                find_whisper_binary()
        assert exc_info.value.returncode is None


class TestGetTranscriber:
    def test_remote(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        transcriber = get_transcriber(Settings(transcription="remote"))
        assert isinstance(transcriber, RemoteWhisperTranscriber)
        assert transcriber.api_key == "sk-env"

    def test_local(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("CLIPCARDS_WHISPER_MODELS_DIR", str(tmp_path))
        transcriber = get_transcriber(Settings(transcription="local", whisper_model_size="small"))
        assert isinstance(transcriber, LocalWhisperTranscriber)
        assert transcriber.model_path == tmp_path.resolve() / "ggml-small.bin"
