"""Selection providers: hosted OpenAI-compatible chat API and a local Ollama server."""
import logging
from typing import Optional

import requests

from clipcards.errors import ConfigError, ProviderResponseError, TransientProviderError
from clipcards.models import SelectedSentence, TimedSegment
from clipcards.selection.prompt import (
    SELECTION_TEMPERATURE,
    SYSTEM_PROMPT,
    attach_selections,
    build_prompt,
    parse_selection_content,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120.0


class HostedSelector:
    """Chat-completions client with ``response_format: json_object``."""

    name = "hosted"

    def __init__(
        self,
        model: str,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def select_sentences(
        self,
        segments: list[TimedSegment],
        target_language: str,
        native_language: str,
        max_count: int,
    ) -> list[SelectedSentence]:
        if not self.api_key:
            raise ConfigError("api_key", "API key not configured (set OPENAI_API_KEY)")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(segments, target_language, native_language, max_count)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": SELECTION_TEMPERATURE,
        }
        logger.info("Requesting sentence selection from %s (%s)...", self.name, self.model)
        try:
            r = requests.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout_s,
            )
            r.raise_for_status()
        except requests.RequestException as exc:
            raise TransientProviderError(self.name, str(exc)) from exc
        try:
            data = r.json()
        except ValueError as exc:
            raise ProviderResponseError(self.name, f"response body is not JSON: {exc}") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderResponseError(self.name, "no message content in completion") from exc

        raw = parse_selection_content(content, self.name)
        return attach_selections(segments, raw, max_count)


class LocalSelector:
    """Ollama ``/api/generate`` client in JSON mode."""

    name = "local"

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def select_sentences(
        self,
        segments: list[TimedSegment],
        target_language: str,
        native_language: str,
        max_count: int,
    ) -> list[SelectedSentence]:
        payload = {
            "model": self.model,
            "prompt": build_prompt(segments, target_language, native_language, max_count),
            "format": "json",
            "stream": False,
            "options": {"temperature": SELECTION_TEMPERATURE},
        }
        logger.info("Requesting sentence selection from %s (%s)...", self.name, self.model)
        try:
            r = requests.post(f"{self.base_url}/api/generate", json=payload, timeout=self.timeout_s)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise TransientProviderError(self.name, str(exc)) from exc
        try:
            data = r.json()
        except ValueError as exc:
            raise ProviderResponseError(self.name, f"response body is not JSON: {exc}") from exc

        content = data.get("response") if isinstance(data, dict) else None
        raw = parse_selection_content(content, self.name)
        return attach_selections(segments, raw, max_count)


def list_hosted_models(
    api_key: Optional[str],
    base_url: str = "https://api.openai.com/v1",
    timeout_s: float = 30.0,
) -> list[str]:
    """Return the sorted GPT model ids visible to *api_key*.

    A successful call also proves the key is valid.

    Raises:
        ConfigError: No API key is available.
        TransientProviderError: The models endpoint could not be reached or
            rejected the key.
    """
    if not api_key:
        raise ConfigError("api_key", "API key not configured (set OPENAI_API_KEY)")
    try:
        r = requests.get(
            f"{base_url.rstrip('/')}/models",
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout_s,
        )
        r.raise_for_status()
    except requests.RequestException as exc:
        raise TransientProviderError("hosted", str(exc)) from exc
    try:
        entries = r.json().get("data", [])
    except ValueError as exc:
        raise ProviderResponseError("hosted", f"response body is not JSON: {exc}") from exc
    return sorted(entry["id"] for entry in entries if "gpt" in entry.get("id", ""))
