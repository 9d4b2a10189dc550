from __future__ import annotations

from dataclasses import dataclass, field

from orb.config import EngineSettings


@dataclass(frozen=True)
class GatePolicy:
    min_duration_s: float = 0.35
    min_rms: float = 0.008  # ambient-noise floor


@dataclass(frozen=True)
class RankingPolicy:
    weight: float = 0.2
    limit: int = 4


@dataclass(frozen=True)
class LoopPolicy:
    debounce_s: float = 0.35


@dataclass
class TurnPolicies:
    voice: str = "Fritz-PlayAI"
    history_limit: int = 8
    service_timeout_s: float | None = 45.0
    extraction_min_chars: int = 12
    gate: GatePolicy = field(default_factory=GatePolicy)
    prompt_ranking: RankingPolicy = field(default_factory=lambda: RankingPolicy(weight=0.2))
    highlight_ranking: RankingPolicy = field(default_factory=lambda: RankingPolicy(weight=0.15))
    loop: LoopPolicy = field(default_factory=LoopPolicy)

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "TurnPolicies":
        return cls(
            voice=settings.voice,
            history_limit=settings.history_limit,
            service_timeout_s=settings.service_timeout_s,
            extraction_min_chars=settings.extraction_min_chars,
            gate=GatePolicy(min_duration_s=settings.gate_min_duration_s, min_rms=settings.gate_min_rms),
            prompt_ranking=RankingPolicy(weight=settings.prompt_fact_weight, limit=settings.fact_limit),
            highlight_ranking=RankingPolicy(weight=settings.highlight_fact_weight, limit=settings.fact_limit),
            loop=LoopPolicy(debounce_s=settings.autoloop_debounce_ms / 1000),
        )


__all__ = ["GatePolicy", "RankingPolicy", "LoopPolicy", "TurnPolicies"]
