"""Tests for per-sentence media extraction (clipcards.media).

The extractor is replaced with an in-memory fake that records how many
sentences are being worked on at once; no ffmpeg binary is required.
"""

import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from clipcards.cancel import CancelToken
from clipcards.errors import CancelledError, ExternalToolError
from clipcards.media.extract import BATCH_SIZE, clip_window, extract_media, media_paths
from clipcards.media.ffmpeg import FFmpegExtractor
from clipcards.models import MediaPair, SelectedSentence


def _sentence(index: int, start: float = 10.0, end: float = 12.0) -> SelectedSentence:
    return SelectedSentence(
        index=index, start_time=start, end_time=end, text=f"line {index}", translation="t", reason="r"
    )


def _index_of(path: Path) -> int:
    return int(path.stem.split("_")[1])


class CountingExtractor:
    """Fake MediaExtractor that tracks concurrently active sentence indices."""

    def __init__(self, delay_s: float = 0.02) -> None:
        self.delay_s = delay_s
        self.lock = threading.Lock()
        self.active: dict[int, int] = {}
        self.max_active_sentences = 0
        self.calls: list[tuple] = []

    def _work(self, kind: str, output_path: Path, *args) -> None:
        index = _index_of(output_path)
        with self.lock:
            self.calls.append((kind, index, *args))
            self.active[index] = self.active.get(index, 0) + 1
            self.max_active_sentences = max(self.max_active_sentences, len(self.active))
        time.sleep(self.delay_s)
        output_path.write_bytes(kind.encode())
        with self.lock:
            self.active[index] -= 1
            if self.active[index] == 0:
                del self.active[index]

    def extract_audio(self, source, start_s, duration_s, output_path, token=None) -> None:
        self._work("audio", output_path, start_s, duration_s)

    def extract_image(self, source, timestamp_s, output_path, token=None) -> None:
        self._work("image", output_path, timestamp_s)


class TestClipWindow:
    def test_padding_applied_both_sides(self) -> None:
        assert clip_window(_sentence(0, 10.0, 12.0), 0.5) == (9.5, 3.0)

    def test_start_clamped_to_zero(self) -> None:
        start, duration = clip_window(_sentence(0, 0.2, 1.0), 0.5)
        assert start == 0.0
        assert duration == pytest.approx(1.5)

    def test_media_paths_named_by_index(self, tmp_path: Path) -> None:
        pair = media_paths(_sentence(7), tmp_path)
        assert pair == MediaPair(tmp_path / "audio_7.mp3", tmp_path / "image_7.jpg")


class TestExtractMedia:
    def test_every_sentence_gets_a_pair(self, tmp_path: Path) -> None:
        extractor = CountingExtractor(delay_s=0.0)
        selections = [_sentence(i) for i in (3, 8, 11)]

        result = extract_media(tmp_path / "video.mp4", selections, tmp_path / "media", CancelToken(), 0.5,
                               extractor=extractor)

        assert set(result) == {3, 8, 11}
        assert result[8].audio_path.read_bytes() == b"audio"
        assert result[8].image_path.read_bytes() == b"image"

    def test_audio_window_and_image_midpoint(self, tmp_path: Path) -> None:
        extractor = CountingExtractor(delay_s=0.0)
        extract_media(tmp_path / "v.mp4", [_sentence(0, 10.0, 12.0)], tmp_path, CancelToken(), 0.5,
                      extractor=extractor)
        calls = {call[0]: call for call in extractor.calls}
        assert calls["audio"][2:] == (9.5, 3.0)
        assert calls["image"][2] == 11.0

    def test_never_more_than_four_sentences_in_flight(self, tmp_path: Path) -> None:
        extractor = CountingExtractor(delay_s=0.03)
        selections = [_sentence(i) for i in range(10)]
        progress: list[tuple[int, int]] = []

        result = extract_media(
            tmp_path / "v.mp4", selections, tmp_path / "media", CancelToken(), 0.5,
            extractor=extractor, progress_callback=lambda done, total: progress.append((done, total)),
        )

        assert len(result) == 10
        assert 1 <= extractor.max_active_sentences <= BATCH_SIZE == 4
        assert progress == [(4, 10), (8, 10), (10, 10)]

    def test_precancelled_token_starts_nothing(self, tmp_path: Path) -> None:
        extractor = CountingExtractor()
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancelledError):
            extract_media(tmp_path / "v.mp4", [_sentence(0)], tmp_path, token, 0.5, extractor=extractor)
        assert extractor.calls == []

    def test_cancel_mid_phase_stops_after_current_batch(self, tmp_path: Path) -> None:
        token = CancelToken()
        extractor = CountingExtractor(delay_s=0.0)
        original = extractor.extract_audio

        def _audio_then_cancel(*args, **kwargs):
            original(*args, **kwargs)
            token.cancel()

        extractor.extract_audio = _audio_then_cancel
        with pytest.raises(CancelledError):
            extract_media(tmp_path / "v.mp4", [_sentence(i) for i in range(10)], tmp_path, token, 0.5,
                          extractor=extractor)
        assert {call[1] for call in extractor.calls} <= {0, 1, 2, 3}

    def test_single_failure_fails_the_phase(self, tmp_path: Path) -> None:
        extractor = CountingExtractor(delay_s=0.0)

        def _image(source, timestamp_s, output_path, token=None):
            if _index_of(output_path) == 2:
                raise ExternalToolError("ffmpeg", 1, "Invalid data found when processing input")
            output_path.write_bytes(b"image")

        extractor.extract_image = _image
        with pytest.raises(ExternalToolError):
            extract_media(tmp_path / "v.mp4", [_sentence(i) for i in range(3)], tmp_path, CancelToken(), 0.5,
                          extractor=extractor)


class TestFFmpegExtractor:
    def test_audio_command(self, tmp_path: Path) -> None:
        token = CancelToken()
        with patch("clipcards.media.ffmpeg.run_tool") as mock_run:
            FFmpegExtractor().extract_audio(tmp_path / "in.mp4", 9.5, 3.0, tmp_path / "a.mp3", token)
        cmd, passed_token = mock_run.call_args[0]
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-ss") + 1] == "9.500"
        assert cmd[cmd.index("-t") + 1] == "3.000"
        assert cmd.index("-ss") < cmd.index("-i")
        assert "-vn" in cmd and "libmp3lame" in cmd
        assert cmd[-1] == str(tmp_path / "a.mp3")
        assert passed_token is token

    def test_image_command(self, tmp_path: Path) -> None:
        with patch("clipcards.media.ffmpeg.run_tool") as mock_run:
            FFmpegExtractor(ffmpeg_bin="/opt/ffmpeg").extract_image(tmp_path / "in.mp4", 11.0, tmp_path / "i.jpg")
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "/opt/ffmpeg"
        assert cmd[cmd.index("-ss") + 1] == "11.000"
        assert cmd[cmd.index("-frames:v") + 1] == "1"

    def test_wav_conversion_is_16k_mono(self, tmp_path: Path) -> None:
        with patch("clipcards.media.ffmpeg.run_tool") as mock_run:
            out = FFmpegExtractor().convert_to_wav(tmp_path / "in.mp4", tmp_path / "a.wav")
        cmd = mock_run.call_args[0][0]
        assert out == tmp_path / "a.wav"
        assert cmd[cmd.index("-ar") + 1] == "16000"
        assert cmd[cmd.index("-ac") + 1] == "1"
