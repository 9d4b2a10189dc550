from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Protocol

from orb.errors import ExtractionFailure, ServiceFailure
from orb.memory.facts import FactCache
from orb.telemetry.logging import get_logger

EXTRACTION_PROMPT = (
    "You extract up to 3 JSON facts from a user/assistant exchange. "
    'Respond ONLY with JSON: {"facts":[{"key":"string","value":string|object,"confidence":0-1}]}.'
)
DEFAULT_CONFIDENCE = 0.7

ChatFn = Callable[[list[dict[str, str]]], Awaitable[str]]


class PersonalityWriter(Protocol):
    async def update_personality(self, key: str, value: Any, confidence: float = 1.0) -> None: ...


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.strip("`\n ")
        if text.lower().startswith("json"):
            text = text[4:].lstrip()
    return text


def parse_facts(raw: str) -> list[dict[str, Any]]:
    """Pull well-formed fact entries out of a model reply."""
    try:
        data = json.loads(_strip_fences(raw or "{}") or "{}")
    except json.JSONDecodeError as exc:
        raise ExtractionFailure(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("facts"), list):
        return []
    facts: list[dict[str, Any]] = []
    for entry in data["facts"]:
        if not isinstance(entry, dict) or not entry.get("key") or not entry.get("value"):
            continue
        confidence = entry.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = DEFAULT_CONFIDENCE
        facts.append(
            {
                "key": str(entry["key"]),
                "value": entry["value"],
                "confidence": min(max(float(confidence), 0.0), 1.0),
            }
        )
    return facts


class FactExtractor:
    """Mines long-term facts from a finished turn and writes them back."""

    def __init__(self, chat: ChatFn, writer: PersonalityWriter, cache: FactCache, min_chars: int = 12) -> None:
        self._chat = chat
        self._writer = writer
        self._cache = cache
        self._min_chars = min_chars
        self._logger = get_logger(__name__)

    async def extract(self, user: str, assistant: str) -> int:
        if len(user) < self._min_chars:
            self._logger.debug("memory.extract.skipped", reason="short_utterance", length=len(user))
            return 0
        messages = [
            {"role": "system", "content": EXTRACTION_PROMPT},
            {"role": "user", "content": f'User said: "{user}"\nAssistant replied: "{assistant}"'},
        ]
        try:
            raw = await self._chat(messages)
        except ServiceFailure as exc:
            raise ExtractionFailure(str(exc)) from exc
        facts = parse_facts(raw)
        for fact in facts:
            await self._writer.update_personality(fact["key"], fact["value"], fact["confidence"])
        await self._cache.refresh()
        self._logger.info("memory.extract.complete", facts=len(facts))
        return len(facts)


__all__ = ["FactExtractor", "parse_facts", "EXTRACTION_PROMPT", "DEFAULT_CONFIDENCE"]
