"""Run orchestration: phase sequencing, progress, cancellation and workspace lifecycle.

One :class:`RunManager` is owned by whatever hosts the pipeline (the CLI, a
server, a test).  It allows a single active run at a time; a second start
request while a run is active is rejected and returns ``None``.

Phases and their share of overall progress::

    DOWNLOADING            0.00 - 0.30   (yt-dlp, or a local copy)
    EXTRACTING_TRANSCRIPT  0.30 - 0.50   (user subtitle > downloaded subtitle > transcription)
    SELECTING              0.50 - 0.65   (LLM selection, retried)
    EXTRACTING_MEDIA       0.65 - 0.85   (ffmpeg, batches of 4)
    PACKAGING              0.85 - 1.00   (.apkg)

Every run ends with exactly one terminal event: CompletedEvent or ErrorEvent.
"""
import logging
import queue
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from clipcards.archive.apkg import build_apkg
from clipcards.cancel import CancelToken
from clipcards.config import Settings
from clipcards.errors import (
    CancelledError,
    ClipCardsError,
    FormatError,
    NoSelectionError,
    NoTranscriptError,
)
from clipcards.ingestion.download import copy_local_input, download_video, is_url
from clipcards.ingestion.transcript import select_transcript
from clipcards.media.extract import extract_media
from clipcards.media.ffmpeg import MediaExtractor
from clipcards.models import DownloadResult, TimedSegment
from clipcards.retry import retry
from clipcards.selection import SentenceSelector, get_selector
from clipcards.transcription import Transcriber, get_transcriber

logger = logging.getLogger("clipcards")


class RunState(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    EXTRACTING_TRANSCRIPT = "extracting_transcript"
    SELECTING = "selecting"
    EXTRACTING_MEDIA = "extracting_media"
    PACKAGING = "packaging"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    phase: RunState
    message: str
    percent: float                  # 0..1, never decreases within a run


@dataclass(frozen=True)
class CompletedEvent:
    archive_path: Path
    card_count: int


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    cancelled: bool = False
    error: Optional[BaseException] = None


PipelineEvent = Union[ProgressEvent, CompletedEvent, ErrorEvent]
EventCallback = Callable[[PipelineEvent], None]


@dataclass
class RunOptions:
    input: str                                  # URL or local video path
    settings: Settings = field(default_factory=Settings)
    subtitle_path: Optional[Path] = None        # user-supplied caption file


class _ProgressReporter:
    """Clamps reported percentages so the stream never regresses."""

    def __init__(self, emit: EventCallback) -> None:
        self._emit = emit
        self._percent = 0.0

    def report(self, phase: RunState, message: str, percent: float) -> None:
        self._percent = min(1.0, max(self._percent, percent))
        self._emit(ProgressEvent(phase, message, self._percent))


class RunManager:
    """Owns the single active run and its cancellation token.

    Collaborators are injectable so the core can be exercised without
    network access or external tools.
    """

    def __init__(
        self,
        downloader: Callable[..., DownloadResult] = download_video,
        transcriber_factory: Callable[[Settings], Transcriber] = get_transcriber,
        selector_factory: Callable[[Settings], SentenceSelector] = get_selector,
        extractor: Optional[MediaExtractor] = None,
        packager: Callable[..., Path] = build_apkg,
        retry_sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._downloader = downloader
        self._transcriber_factory = transcriber_factory
        self._selector_factory = selector_factory
        self._extractor = extractor
        self._packager = packager
        self._retry_sleep = retry_sleep

        self._lock = threading.Lock()
        self._token: Optional[CancelToken] = None
        self._state = RunState.IDLE
        self._workspace: Optional[Path] = None
        self._pending_cleanups: dict[Path, threading.Timer] = {}

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def active(self) -> bool:
        with self._lock:
            return self._token is not None

    @property
    def workspace(self) -> Optional[Path]:
        """Workspace of the current or most recent run."""
        return self._workspace

    def cancel(self) -> None:
        """Cancel the active run. Idempotent; a no-op when nothing is running."""
        with self._lock:
            token = self._token
        if token is not None:
            logger.info("Cancellation requested")
            token.cancel()

    def start(
        self,
        options: RunOptions,
        on_event: Optional[EventCallback] = None,
    ) -> Optional[PipelineEvent]:
        """Run the pipeline on the calling thread.

        Every event (progress and terminal) is passed to *on_event*.

        Returns:
            The terminal CompletedEvent or ErrorEvent, or None if another run
            is already active.
        """
        token = self._claim()
        if token is None:
            return None
        return self._run(options, token, on_event or (lambda _event: None))

    def events(self, options: RunOptions) -> Iterator[PipelineEvent]:
        """Run the pipeline on a worker thread and yield its events.

        The iterator ends after the terminal event.  Closing it early cancels
        the run.  Yields nothing if another run is already active.
        """
        token = self._claim()
        if token is None:
            return
        events: "queue.Queue[PipelineEvent]" = queue.Queue()
        worker = threading.Thread(
            target=self._run,
            args=(options, token, events.put),
            name="clipcards-run",
            daemon=True,
        )
        worker.start()
        finished = False
        try:
            while True:
                event = events.get()
                yield event
                if isinstance(event, (CompletedEvent, ErrorEvent)):
                    finished = True
                    break
        finally:
            if not finished:
                token.cancel()
            worker.join()

    def cleanup_now(self) -> None:
        """Delete every workspace still waiting for its delayed cleanup.

        Hosts that exit right after a run call this so the grace delay does
        not outlive the process.
        """
        with self._lock:
            pending, self._pending_cleanups = self._pending_cleanups, {}
        for workspace, timer in pending.items():
            timer.cancel()
            shutil.rmtree(workspace, ignore_errors=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _claim(self) -> Optional[CancelToken]:
        with self._lock:
            if self._token is not None:
                logger.warning("A run is already active; start request ignored")
                return None
            self._token = CancelToken()
            self._state = RunState.IDLE
            return self._token

    def _release(self) -> None:
        with self._lock:
            self._token = None

    def _enter(self, state: RunState) -> None:
        self._state = state
        logger.info("Phase: %s", state.value)

    def _run(self, options: RunOptions, token: CancelToken, emit: EventCallback) -> PipelineEvent:
        settings = options.settings
        try:
            workspace = Path(tempfile.mkdtemp(prefix="clipcards-"))
            (workspace / "media").mkdir()
        except OSError as exc:
            self._state = RunState.ERROR
            self._release()
            failed = ErrorEvent(message=f"Cannot create workspace: {exc}", error=exc)
            emit(failed)
            return failed
        self._workspace = workspace
        reporter = _ProgressReporter(emit)
        logger.info("Run started. Workspace: %s", workspace)

        terminal: PipelineEvent
        try:
            archive_path, card_count = self._execute(options, token, workspace, reporter)
            self._state = RunState.DONE
            reporter.report(RunState.DONE, "Complete!", 1.0)
            terminal = CompletedEvent(archive_path=archive_path, card_count=card_count)
        except ClipCardsError as exc:
            # A subprocess killed by cancellation reports a tool error; the run was still cancelled.
            if isinstance(exc, CancelledError) or token.cancelled:
                self._state = RunState.CANCELLED
                logger.info("Run cancelled")
                terminal = ErrorEvent(message="Cancelled", cancelled=True, error=exc)
            else:
                self._state = RunState.ERROR
                logger.error("Run failed: %s", exc)
                terminal = ErrorEvent(message=str(exc), error=exc)
        except Exception as exc:
            self._state = RunState.ERROR
            logger.exception("Run failed with an unexpected error")
            terminal = ErrorEvent(message=f"Unexpected error: {exc}", error=exc)
        finally:
            self._schedule_cleanup(workspace, settings)
            self._release()

        emit(terminal)
        return terminal

    def _execute(
        self,
        options: RunOptions,
        token: CancelToken,
        workspace: Path,
        reporter: _ProgressReporter,
    ) -> tuple[Path, int]:
        settings = options.settings

        # --- Downloading ---
        self._enter(RunState.DOWNLOADING)
        reporter.report(RunState.DOWNLOADING, "Downloading video...", 0.0)
        if is_url(options.input):
            result = self._downloader(
                options.input,
                workspace,
                on_progress=lambda f: reporter.report(
                    RunState.DOWNLOADING, f"Downloading: {f * 100:.0f}%", f * 0.30
                ),
                token=token,
            )
        else:
            result = DownloadResult(video_path=copy_local_input(Path(options.input), workspace))
        token.raise_if_cancelled("download")

        # --- Transcript ---
        self._enter(RunState.EXTRACTING_TRANSCRIPT)
        reporter.report(RunState.EXTRACTING_TRANSCRIPT, "Extracting sentences...", 0.30)
        user_subtitle = None
        if options.subtitle_path is not None:
            logger.info("Using user-provided subtitle file")
            user_subtitle = workspace / f"user-subtitle{options.subtitle_path.suffix.lower()}"
            try:
                shutil.copyfile(options.subtitle_path, user_subtitle)
            except OSError as exc:
                raise FormatError(options.subtitle_path.name, str(exc)) from exc
        elif result.subtitle_path is not None:
            logger.info("Using downloaded subtitle file %s", result.subtitle_path.name)

        def _transcribe() -> list[TimedSegment]:
            logger.info("No subtitles found, transcribing audio")
            reporter.report(RunState.EXTRACTING_TRANSCRIPT, "Transcribing audio...", 0.35)
            return self._transcriber_factory(settings).transcribe(result.video_path, workspace, token)

        choice = select_transcript(user_subtitle, result.subtitle_path, _transcribe)
        if not choice.segments:
            raise NoTranscriptError(choice.source)
        logger.info("Found %d sentences (%s)", len(choice.segments), choice.source)
        token.raise_if_cancelled("transcript extraction")

        # --- Selecting ---
        self._enter(RunState.SELECTING)
        reporter.report(RunState.SELECTING, "Selecting key sentences...", 0.50)
        selector = self._selector_factory(settings)
        selected = retry(
            lambda: selector.select_sentences(
                choice.segments,
                settings.target_language,
                settings.native_language,
                settings.max_cards,
            ),
            label="Sentence selection",
            token=token,
            sleep=self._retry_sleep,
        )
        if not selected:
            raise NoSelectionError(selector.name, len(choice.segments))
        logger.info("Selected %d sentences", len(selected))
        token.raise_if_cancelled("sentence selection")

        # --- Media ---
        self._enter(RunState.EXTRACTING_MEDIA)
        reporter.report(RunState.EXTRACTING_MEDIA, "Extracting audio & screenshots...", 0.65)
        media_map = extract_media(
            result.video_path,
            selected,
            workspace / "media",
            token,
            settings.audio_padding_s,
            extractor=self._extractor,
            progress_callback=lambda done, total: reporter.report(
                RunState.EXTRACTING_MEDIA,
                f"Extracted media {done}/{total}",
                0.65 + 0.20 * done / total,
            ),
        )
        token.raise_if_cancelled("media extraction")

        # --- Packaging ---
        self._enter(RunState.PACKAGING)
        reporter.report(RunState.PACKAGING, "Building Anki package...", 0.85)
        archive_path = self._packager(selected, media_map, workspace, options.input)
        card_count = sum(1 for sentence in selected if sentence.index in media_map)
        return archive_path, card_count

    def _schedule_cleanup(self, workspace: Path, settings: Settings) -> None:
        if settings.preserve_workspace:
            logger.info("Workspace preserved at %s", workspace)
            return
        timer = threading.Timer(settings.cleanup_delay_s, self._delayed_cleanup, args=(workspace,))
        timer.daemon = True
        with self._lock:
            self._pending_cleanups[workspace] = timer
        timer.start()

    def _delayed_cleanup(self, workspace: Path) -> None:
        shutil.rmtree(workspace, ignore_errors=True)
        with self._lock:
            self._pending_cleanups.pop(workspace, None)
        logger.debug("Workspace removed: %s", workspace)
