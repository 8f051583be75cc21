"""Prompt construction and response validation shared by every selection provider."""
import json
from dataclasses import dataclass

from pydantic import TypeAdapter, ValidationError

from clipcards.errors import ProviderResponseError
from clipcards.models import SelectedSentence, TimedSegment

SYSTEM_PROMPT = "You are a language learning assistant. Respond only with valid JSON."

# Low temperature keeps the JSON shape stable across attempts.
SELECTION_TEMPERATURE = 0.3


@dataclass
class RawSelection:
    index: int
    translation: str
    reason: str = ""


@dataclass
class SelectionResponse:
    selections: list[RawSelection]


_adapter: TypeAdapter[SelectionResponse] = TypeAdapter(SelectionResponse)


def build_prompt(
    segments: list[TimedSegment],
    target_language: str,
    native_language: str,
    max_count: int,
) -> str:
    """Render the selection instruction with every segment as an ``[index] text`` line."""
    numbered = "\n".join(f"[{seg.index}] {seg.text}" for seg in segments)
    return (
        f"Below are timestamped sentences from a video in {target_language}.\n\n"
        f"Select up to {max_count} sentences that are most useful for a "
        f"{native_language}-speaking learner studying {target_language}.\n\n"
        "Prefer sentences that:\n"
        "- Use common, practical vocabulary\n"
        "- Are grammatically complete\n"
        "- Illustrate useful patterns or expressions\n"
        "- Are varied in topic and difficulty\n\n"
        "For each selected sentence, provide:\n"
        "- index: the original index number\n"
        f"- translation: translation into {native_language}\n"
        f"- reason: brief reason why this sentence is useful (in {native_language})\n\n"
        'Respond with JSON: {"selections": [{"index": 0, "translation": "...", "reason": "..."}]}\n\n'
        f"Sentences:\n{numbered}"
    )


def parse_selection_content(content: str | None, provider: str) -> list[RawSelection]:
    """Decode and validate the model's JSON text.

    Raises ProviderResponseError on empty content, invalid JSON, or a payload
    that does not match ``{"selections": [{index, translation, reason}]}``.
    """
    if not content or not content.strip():
        raise ProviderResponseError(provider, "empty response")
    try:
        data = json.loads(content.strip())
    except json.JSONDecodeError as exc:
        raise ProviderResponseError(provider, f"invalid JSON: {exc}") from exc
    try:
        return _adapter.validate_python(data).selections
    except ValidationError as exc:
        raise ProviderResponseError(provider, f"unexpected JSON shape: {exc.error_count()} error(s)") from exc


def attach_selections(
    segments: list[TimedSegment],
    raw: list[RawSelection],
    max_count: int,
) -> list[SelectedSentence]:
    """Join raw selections back onto their segments.

    Unknown and repeated indices are dropped, model order is kept, and the
    result is cut to ``max_count``.
    """
    by_index = {seg.index: seg for seg in segments}
    seen: set[int] = set()
    selected: list[SelectedSentence] = []
    for sel in raw:
        segment = by_index.get(sel.index)
        if segment is None or sel.index in seen:
            continue
        seen.add(sel.index)
        selected.append(SelectedSentence.from_segment(segment, sel.translation, sel.reason))
        if len(selected) >= max_count:
            break
    return selected
