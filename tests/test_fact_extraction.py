from __future__ import annotations

from typing import Any

import pytest

from orb.errors import ExtractionFailure, ServiceFailure
from orb.memory.extraction import DEFAULT_CONFIDENCE, FactExtractor, parse_facts
from orb.memory.facts import FactCache
from orb.orchestrator.events import PersonalityFact


@pytest.fixture
def anyio_backend():
    return "asyncio"


class MemoryWriter:
    def __init__(self) -> None:
        self.rows: dict[str, tuple[Any, float]] = {}

    async def update_personality(self, key: str, value: Any, confidence: float = 1.0) -> None:
        self.rows[key] = (value, confidence)

    async def get_personality(self) -> list[PersonalityFact]:
        return [PersonalityFact(key=k, value=v, confidence=c) for k, (v, c) in self.rows.items()]

    async def delete_personality(self, key: str) -> bool:
        return self.rows.pop(key, None) is not None


def chat_returning(reply: str):
    calls: list[list[dict[str, str]]] = []

    async def chat(messages: list[dict[str, str]]) -> str:
        calls.append(messages)
        return reply

    chat.calls = calls  # type: ignore[attr-defined]
    return chat


def test_parse_facts_defaults_and_clamps_confidence() -> None:
    raw = (
        '```json\n{"facts": ['
        '{"key": "pets", "value": ["cat"]},'
        '{"key": "city", "value": "Lisbon", "confidence": 1.7},'
        '{"key": "", "value": "skip me"},'
        '{"key": "mood", "value": "calm", "confidence": "high"}'
        "]}\n```"
    )
    facts = parse_facts(raw)
    assert facts == [
        {"key": "pets", "value": ["cat"], "confidence": DEFAULT_CONFIDENCE},
        {"key": "city", "value": "Lisbon", "confidence": 1.0},
        {"key": "mood", "value": "calm", "confidence": DEFAULT_CONFIDENCE},
    ]


def test_parse_facts_handles_non_fact_payloads() -> None:
    assert parse_facts('{"facts": "none"}') == []
    assert parse_facts("") == []
    with pytest.raises(ExtractionFailure):
        parse_facts("I could not find anything")


@pytest.mark.anyio
async def test_extractor_writes_facts_and_refreshes_cache() -> None:
    writer = MemoryWriter()
    cache = FactCache(writer)
    chat = chat_returning('{"facts": [{"key": "favorite_music", "value": "jazz", "confidence": 0.8}]}')

    count = await FactExtractor(chat, writer, cache).extract("I really love listening to jazz", "Nice choice!")

    assert count == 1
    assert writer.rows == {"favorite_music": ("jazz", 0.8)}
    assert [fact.key for fact in cache.facts] == ["favorite_music"]
    assert "I really love listening to jazz" in chat.calls[0][1]["content"]


@pytest.mark.anyio
async def test_short_utterances_are_not_mined() -> None:
    writer = MemoryWriter()
    chat = chat_returning('{"facts": []}')

    count = await FactExtractor(chat, writer, FactCache(writer)).extract("thanks orb", "Anytime.")

    assert count == 0
    assert chat.calls == []


@pytest.mark.anyio
async def test_service_failure_becomes_extraction_failure() -> None:
    writer = MemoryWriter()

    async def failing_chat(messages: list[dict[str, str]]) -> str:
        raise ServiceFailure("chat", "503")

    with pytest.raises(ExtractionFailure):
        await FactExtractor(failing_chat, writer, FactCache(writer)).extract("my cat is called Miso", "Cute!")
