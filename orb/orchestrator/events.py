from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal


@dataclass(slots=True)
class AudioBuffer:
    data: bytes
    captured_at: float
    sample_rate: int


@dataclass(frozen=True, slots=True)
class SignalMetrics:
    rms: float
    duration_seconds: float
    peak_amplitude: float


@dataclass(frozen=True, slots=True)
class AudioLevels:
    bass: float
    mid: float
    treble: float
    volume: float

    def to_dict(self) -> dict[str, float]:
        return {"bass": self.bass, "mid": self.mid, "treble": self.treble, "volume": self.volume}

    def is_silent(self) -> bool:
        return self.volume == 0.0 and self.bass == 0.0 and self.mid == 0.0 and self.treble == 0.0


ZERO_LEVELS = AudioLevels(bass=0.0, mid=0.0, treble=0.0, volume=0.0)


TurnState = Literal["IDLE", "CAPTURING", "TRANSCRIBING", "COMPOSING", "SYNTHESIZING", "PLAYING"]

Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True, slots=True)
class ConversationMessage:
    role: Role
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def as_prompt(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class PersonalityFact:
    key: str
    value: str | list[Any] | dict[str, Any]
    confidence: float
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "confidence": self.confidence,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class CommandResult:
    success: bool
    output: str | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        if self.success:
            return self.output or ""
        return self.error or ""


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    command: str
    result: CommandResult

    def summary(self) -> str:
        return f"Tool Output ({self.command}): {self.result.text}"


__all__ = [
    "AudioBuffer",
    "SignalMetrics",
    "AudioLevels",
    "ZERO_LEVELS",
    "TurnState",
    "Role",
    "ConversationMessage",
    "PersonalityFact",
    "CommandResult",
    "ToolInvocation",
]
