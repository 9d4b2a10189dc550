from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Protocol

from orb.errors import ToolExecutionFailure, ToolParseFailure
from orb.orchestrator.events import CommandResult, ConversationMessage, ToolInvocation
from orb.telemetry.logging import get_logger

# Optional ``` / ```json fence, then exactly {"tool": "bash", "command": "..."}.
TOOL_CALL_PATTERN = re.compile(
    r'(?:```(?:json)?\s*)?(\{"tool":\s*"bash",\s*"command":\s*".*?"\})(?:\s*```)?',
    re.DOTALL,
)


class CommandExecutor(Protocol):
    async def execute(self, command: str) -> CommandResult: ...


@dataclass(frozen=True, slots=True)
class Interception:
    final_text: str
    invocation: ToolInvocation | None = None
    message: ConversationMessage | None = None


def parse_tool_call(reply_text: str) -> tuple[str, re.Match[str]] | None:
    """Return the command of the first tool-call block and its match, if any."""
    match = TOOL_CALL_PATTERN.search(reply_text)
    if match is None:
        return None
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        raise ToolParseFailure(str(exc)) from exc
    command = payload.get("command")
    if payload.get("tool") != "bash" or not isinstance(command, str):
        raise ToolParseFailure("tool call is not a bash command")
    return command, match


class ToolCallInterceptor:
    def __init__(self, executor: CommandExecutor | None) -> None:
        self._executor = executor
        self._logger = get_logger(__name__)

    async def intercept(self, reply_text: str) -> Interception:
        try:
            parsed = parse_tool_call(reply_text)
        except ToolParseFailure as exc:
            self._logger.debug("tool.parse_failed", error=str(exc))
            return Interception(final_text=reply_text)
        if parsed is None or self._executor is None:
            return Interception(final_text=reply_text)

        command, match = parsed
        self._logger.info("tool.invoke", command=command)
        try:
            result = await self._executor.execute(command)
        except ToolExecutionFailure as exc:
            self._logger.error("tool.execute_failed", command=command, error=str(exc))
            return Interception(final_text=reply_text)
        except Exception as exc:
            self._logger.exception("tool.execute_failed", command=command, error=str(exc))
            return Interception(final_text=reply_text)

        invocation = ToolInvocation(command=command, result=result)
        message = ConversationMessage(
            role="system",
            content=invocation.summary(),
            metadata={"tool": "bash", "command": command, "success": result.success},
        )
        final_text = (reply_text[: match.start()] + reply_text[match.end() :]).strip()
        return Interception(final_text=final_text, invocation=invocation, message=message)


__all__ = ["ToolCallInterceptor", "CommandExecutor", "Interception", "parse_tool_call", "TOOL_CALL_PATTERN"]
