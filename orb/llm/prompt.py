from __future__ import annotations

from collections.abc import Sequence

from orb.memory.ranker import serialize_fact_value
from orb.orchestrator.events import ConversationMessage, PersonalityFact

SYSTEM_PROMPT = (
    "You are Voice Orb, an ambient AI companion.\n"
    "Capabilities:\n"
    "1. You can execute bash commands on the user's computer. To do this, output a JSON block: "
    '```json\n{{"tool": "bash", "command": "your command here"}}\n```\n'
    "2. Keep responses vivid but concise (max 3 sentences).\n"
    "3. Blend empathy with curiosity.\n"
    "\n"
    "Known preferences & memories:\n"
    "{facts}\n"
    "Always acknowledge long-term details if relevant."
)

NO_FACTS_LINE = "- none yet, so learn actively."


def fact_line(fact: PersonalityFact) -> str:
    return f"- {fact.key}: {serialize_fact_value(fact.value)} (confidence {fact.confidence * 100:.0f}%)"


def build_system_prompt(facts: Sequence[PersonalityFact]) -> str:
    lines = "\n".join(fact_line(fact) for fact in facts)
    return SYSTEM_PROMPT.format(facts=lines or NO_FACTS_LINE)


def compose_messages(
    transcript: str,
    facts: Sequence[PersonalityFact],
    history: Sequence[ConversationMessage],
) -> list[dict[str, str]]:
    """System prompt, then prior turns oldest first, then the new utterance."""
    return [
        {"role": "system", "content": build_system_prompt(facts)},
        *(message.as_prompt() for message in history),
        {"role": "user", "content": transcript},
    ]


__all__ = ["SYSTEM_PROMPT", "build_system_prompt", "compose_messages", "fact_line"]
