from __future__ import annotations

from typing import Protocol

from orb.orchestrator.events import PersonalityFact
from orb.telemetry.logging import get_logger


class PersonalitySource(Protocol):
    async def get_personality(self) -> list[PersonalityFact]: ...

    async def delete_personality(self, key: str) -> bool: ...


class FactCache:
    """Read-through cache of personality facts, refreshed after each extraction."""

    def __init__(self, source: PersonalitySource) -> None:
        self._source = source
        self._facts: tuple[PersonalityFact, ...] = ()
        self._logger = get_logger(__name__)

    @property
    def facts(self) -> tuple[PersonalityFact, ...]:
        return self._facts

    async def refresh(self) -> tuple[PersonalityFact, ...]:
        self._facts = tuple(await self._source.get_personality())
        self._logger.debug("facts.refreshed", count=len(self._facts))
        return self._facts

    async def forget(self, key: str) -> bool:
        removed = await self._source.delete_personality(key)
        await self.refresh()
        return removed


__all__ = ["FactCache", "PersonalitySource"]
