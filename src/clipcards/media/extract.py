"""Per-sentence audio clip and still frame extraction with bounded concurrency.

Sentences are processed in batches of BATCH_SIZE.  Within a batch the audio
and image extraction of every sentence run concurrently on a thread pool, so
no more than BATCH_SIZE sentence jobs are ever in flight.  Any single failure
fails the whole phase.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from clipcards.cancel import CancelToken
from clipcards.media.ffmpeg import FFmpegExtractor, MediaExtractor
from clipcards.models import MediaPair, SelectedSentence

logger = logging.getLogger(__name__)

BATCH_SIZE = 4


def clip_window(sentence: SelectedSentence, padding_s: float) -> tuple[float, float]:
    """Return (start_s, duration_s) of the padded audio window for *sentence*.

    The start is clamped to 0; the end is not clamped (ffmpeg stops at EOF).
    """
    start = max(0.0, sentence.start_time - padding_s)
    end = sentence.end_time + padding_s
    return start, end - start


def media_paths(sentence: SelectedSentence, media_dir: Path) -> MediaPair:
    return MediaPair(
        audio_path=media_dir / f"audio_{sentence.index}.mp3",
        image_path=media_dir / f"image_{sentence.index}.jpg",
    )


def extract_media(
    source: Path,
    selections: list[SelectedSentence],
    media_dir: Path,
    token: CancelToken,
    padding_s: float,
    extractor: Optional[MediaExtractor] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> dict[int, MediaPair]:
    """Extract an audio clip and a still frame for every selected sentence.

    Args:
        source: Video file inside the run workspace.
        selections: Sentences to extract, in deck order.
        media_dir: Output directory (created if absent).
        token: Run cancellation token; checked before each batch and
            forwarded to every extraction call.
        padding_s: Seconds of audio added before and after each sentence.
        extractor: MediaExtractor implementation (default: FFmpegExtractor).
        progress_callback: Called as (sentences_done, total) after each batch.

    Returns:
        Mapping of sentence index to its MediaPair.

    Raises:
        CancelledError: If the token fires before or during a batch.
        ExternalToolError: If any extraction call fails.
    """
    media_dir.mkdir(parents=True, exist_ok=True)
    extractor = extractor if extractor is not None else FFmpegExtractor()
    results: dict[int, MediaPair] = {}
    total = len(selections)

    for batch_start in range(0, total, BATCH_SIZE):
        token.raise_if_cancelled("media extraction")
        batch = selections[batch_start:batch_start + BATCH_SIZE]

        jobs: list[tuple[int, MediaPair, Future, Future]] = []
        with ThreadPoolExecutor(max_workers=2 * len(batch), thread_name_prefix="clipcards-media") as pool:
            for sentence in batch:
                pair = media_paths(sentence, media_dir)
                start_s, duration_s = clip_window(sentence, padding_s)
                audio_job = pool.submit(
                    extractor.extract_audio, source, start_s, duration_s, pair.audio_path, token
                )
                image_job = pool.submit(
                    extractor.extract_image, source, sentence.midpoint, pair.image_path, token
                )
                jobs.append((sentence.index, pair, audio_job, image_job))

        # Killed siblings surface as tool errors; report the cancellation instead.
        token.raise_if_cancelled("media extraction")

        for index, pair, audio_job, image_job in jobs:
            audio_job.result()
            image_job.result()
            results[index] = pair
            logger.debug("extracted media for sentence %d", index)

        if progress_callback is not None:
            progress_callback(batch_start + len(batch), total)

    return results
