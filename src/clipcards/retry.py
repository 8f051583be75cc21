"""Linear-backoff retry for flaky provider calls."""
import logging
import time
from typing import Callable, Optional, TypeVar

from clipcards.cancel import CancelToken
from clipcards.errors import CancelledError, ProviderResponseError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY_S = 1.0
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (TransientProviderError, ProviderResponseError)


def retry(
    fn: Callable[[], T],
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay_s: float = DEFAULT_BASE_DELAY_S,
    label: str = "operation",
    retry_on: tuple[type[Exception], ...] = RETRYABLE_ERRORS,
    token: Optional[CancelToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call *fn* up to *attempts* times, waiting ``attempt * base_delay_s`` between tries.

    Only exceptions in *retry_on* are retried; anything else propagates at
    once.  After the final attempt the last error is re-raised unchanged.

    When a *token* is given the wait is interruptible: cancelling during the
    backoff raises CancelledError instead of starting another attempt.
    *sleep* replaces the wait entirely (tests pass a recorder).
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    for attempt in range(1, attempts + 1):
        if token is not None:
            token.raise_if_cancelled(label)
        try:
            return fn()
        except retry_on as exc:
            if attempt == attempts:
                raise
            delay = attempt * base_delay_s
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt, attempts, delay, str(exc).partition("\n")[0],
            )
            if sleep is not None:
                sleep(delay)
            elif token is not None:
                if token.wait(delay):
                    raise CancelledError(label) from exc
            else:
                time.sleep(delay)

    raise AssertionError("unreachable")
