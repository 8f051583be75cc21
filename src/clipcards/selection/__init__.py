"""LLM sentence selection."""
import logging
from typing import Protocol

from clipcards.config import Settings
from clipcards.models import SelectedSentence, TimedSegment
from clipcards.selection.providers import HostedSelector, LocalSelector, list_hosted_models

_logger = logging.getLogger("clipcards")

__all__ = ["SentenceSelector", "HostedSelector", "LocalSelector", "get_selector", "list_hosted_models"]


class SentenceSelector(Protocol):
    name: str

    def select_sentences(
        self,
        segments: list[TimedSegment],
        target_language: str,
        native_language: str,
        max_count: int,
    ) -> list[SelectedSentence]: ...


def get_selector(settings: Settings) -> SentenceSelector:
    """Build the selection provider named by ``settings.provider``."""
    if settings.provider == "hosted":
        selector: SentenceSelector = HostedSelector(
            model=settings.hosted_model,
            api_key=settings.resolved_api_key(),
            base_url=settings.hosted_base_url,
        )
        model = settings.hosted_model
    elif settings.provider == "local":
        selector = LocalSelector(model=settings.local_model, base_url=settings.ollama_url)
        model = settings.local_model
    else:
        raise ValueError(f"Unknown provider: {settings.provider!r}. Valid options: hosted, local")

    _logger.info("Selection provider: %s (%s)", selector.name, model)
    return selector
