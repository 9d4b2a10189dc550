from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from typing import Any

from orb.orchestrator.events import PersonalityFact
from orb.orchestrator.policies import RankingPolicy

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

ValueSerializer = Callable[[Any], str]


def serialize_fact_value(value: Any) -> str:
    """Flatten a fact value into readable text."""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    if isinstance(value, dict):
        return " • ".join(f"{key}: {item}" for key, item in value.items())
    return str(value)


def json_fact_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def tokenize(context: str) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split(context.lower()) if token]


class MemoryRanker:
    """Scores long-term facts against the current utterance.

    ``score = confidence + weight * hits`` where ``hits`` counts context tokens
    found inside the serialized fact value. Ordering is deterministic: score,
    then confidence, then input order.
    """

    def __init__(
        self,
        policy: RankingPolicy | None = None,
        serializer: ValueSerializer = serialize_fact_value,
    ) -> None:
        self._policy = policy or RankingPolicy()
        self._serialize = serializer

    def score(self, fact: PersonalityFact, tokens: Iterable[str]) -> float:
        serialized = self._serialize(fact.value).lower()
        hits = sum(1 for token in tokens if token in serialized)
        return fact.confidence + self._policy.weight * hits

    def rank(
        self,
        facts: Iterable[PersonalityFact],
        context: str | None = None,
        limit: int | None = None,
    ) -> list[PersonalityFact]:
        pool = list(facts)
        take = self._policy.limit if limit is None else limit
        if not pool or take <= 0:
            return []
        tokens = tokenize(context) if context else []
        if not tokens:
            return sorted(pool, key=lambda fact: -fact.confidence)[:take]
        scored = [(self.score(fact, tokens), fact) for fact in pool]
        scored.sort(key=lambda item: (-item[0], -item[1].confidence))
        return [fact for _, fact in scored[:take]]


__all__ = ["MemoryRanker", "serialize_fact_value", "json_fact_value", "tokenize"]
