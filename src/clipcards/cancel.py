"""Cooperative cancellation token shared by every phase of a run."""
import logging
import threading
from typing import Callable

from clipcards.errors import CancelledError

logger = logging.getLogger(__name__)


class CancelToken:
    """Thread-safe, one-shot cancellation signal.

    Phases call :meth:`raise_if_cancelled` at their boundaries. Code that spawns
    subprocesses registers a kill callback with :meth:`on_cancel` so that
    cancellation terminates work already in flight, not only work not yet
    scheduled.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Trigger cancellation. Idempotent; callbacks run at most once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:  # process may already have exited
                logger.debug("cancel callback failed: %s", exc)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                handle = self._next_id
                self._next_id += 1
                self._callbacks[handle] = callback

                def _unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(handle, None)

                return _unregister
        callback()
        return lambda: None

    def raise_if_cancelled(self, where: str = "pipeline") -> None:
        if self._event.is_set():
            raise CancelledError(where)

    def wait(self, timeout_s: float) -> bool:
        """Sleep up to *timeout_s*, waking early on cancellation. Returns True if cancelled."""
        return self._event.wait(timeout_s)
