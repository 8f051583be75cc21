from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class TimedSegment:
    """A single transcript line with its position in the source video."""

    index: int          # 0-based, contiguous after duplicate merging
    start_time: float   # seconds
    end_time: float     # seconds, always > start_time
    text: str           # markup-stripped, single-line

    @property
    def midpoint(self) -> float:
        return (self.start_time + self.end_time) / 2.0


@dataclass(frozen=True)
class SelectedSentence:
    """A TimedSegment chosen by the sentence selector, with its translation."""

    index: int
    start_time: float
    end_time: float
    text: str
    translation: str
    reason: str

    @classmethod
    def from_segment(cls, segment: TimedSegment, translation: str, reason: str) -> "SelectedSentence":
        return cls(
            index=segment.index,
            start_time=segment.start_time,
            end_time=segment.end_time,
            text=segment.text,
            translation=translation,
            reason=reason,
        )

    @property
    def midpoint(self) -> float:
        return (self.start_time + self.end_time) / 2.0


@dataclass(frozen=True)
class MediaPair:
    """Audio clip and still frame extracted for one sentence (keyed by sentence index)."""

    audio_path: Path
    image_path: Path


@dataclass(frozen=True)
class DownloadResult:
    video_path: Path
    subtitle_path: Path | None = None
