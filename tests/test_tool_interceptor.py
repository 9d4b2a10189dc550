from __future__ import annotations

import sys

import pytest

from orb.errors import ToolExecutionFailure, ToolParseFailure
from orb.orchestrator.events import CommandResult
from orb.tools.interceptor import ToolCallInterceptor, parse_tool_call
from orb.tools.shell import ShellCommandExecutor


@pytest.fixture
def anyio_backend():
    return "asyncio"


class RecordingExecutor:
    def __init__(self, result: CommandResult | None = None, error: Exception | None = None) -> None:
        self.result = result or CommandResult(success=True, output="file1\nfile2")
        self.error = error
        self.commands: list[str] = []

    async def execute(self, command: str) -> CommandResult:
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.anyio
async def test_fenced_tool_call_runs_once_and_is_removed() -> None:
    executor = RecordingExecutor()
    reply = 'Here you go.\n```json\n{"tool":"bash","command":"ls -la"}\n```\nAnything else?'

    interception = await ToolCallInterceptor(executor).intercept(reply)

    assert executor.commands == ["ls -la"]
    assert interception.message is not None
    assert interception.message.role == "system"
    assert interception.message.content == "Tool Output (ls -la): file1\nfile2"
    assert interception.final_text == "Here you go.\n\nAnything else?"


@pytest.mark.anyio
async def test_bare_tool_call_is_recognised() -> None:
    executor = RecordingExecutor()
    interception = await ToolCallInterceptor(executor).intercept('{"tool": "bash", "command": "date"}')
    assert executor.commands == ["date"]
    assert interception.final_text == ""


@pytest.mark.anyio
async def test_only_first_tool_call_is_executed() -> None:
    executor = RecordingExecutor()
    reply = '{"tool": "bash", "command": "pwd"} then {"tool": "bash", "command": "whoami"}'
    interception = await ToolCallInterceptor(executor).intercept(reply)
    assert executor.commands == ["pwd"]
    assert '"whoami"' in interception.final_text


@pytest.mark.anyio
async def test_failed_command_output_is_the_error() -> None:
    executor = RecordingExecutor(CommandResult(success=False, error="Command failed: nope\nnot found"))
    interception = await ToolCallInterceptor(executor).intercept('{"tool": "bash", "command": "nope"}')
    assert interception.message is not None
    assert interception.message.content == "Tool Output (nope): Command failed: nope\nnot found"
    assert interception.message.metadata["success"] is False


@pytest.mark.anyio
async def test_plain_and_malformed_replies_pass_through() -> None:
    executor = RecordingExecutor()
    interceptor = ToolCallInterceptor(executor)
    for reply in ("Just chatting.", '{"tool": "python", "command": "x"}', '{"tool": "bash", "cmd": "ls"}'):
        interception = await interceptor.intercept(reply)
        assert interception.final_text == reply
        assert interception.message is None
    assert executor.commands == []


@pytest.mark.anyio
async def test_executor_exception_passes_reply_through() -> None:
    reply = '{"tool": "bash", "command": "ls"}'
    interception = await ToolCallInterceptor(RecordingExecutor(error=ToolExecutionFailure("boom"))).intercept(reply)
    assert interception.final_text == reply
    assert interception.invocation is None


@pytest.mark.anyio
async def test_unexpected_executor_error_passes_reply_through() -> None:
    reply = '{"tool": "bash", "command": "ls"}'
    interception = await ToolCallInterceptor(RecordingExecutor(error=RuntimeError("loop closed"))).intercept(reply)
    assert interception.final_text == reply
    assert interception.message is None


@pytest.mark.anyio
async def test_null_byte_command_is_a_tool_failure() -> None:
    reply = 'Sure. ```json\n{"tool": "bash", "command": "ls\\u0000"}\n```'

    with pytest.raises(ToolExecutionFailure):
        await ShellCommandExecutor(timeout_s=10).execute("ls\x00")

    interception = await ToolCallInterceptor(ShellCommandExecutor(timeout_s=10)).intercept(reply)
    assert interception.final_text == reply
    assert interception.invocation is None
    assert interception.message is None


def test_parse_rejects_invalid_json_inside_block() -> None:
    with pytest.raises(ToolParseFailure):
        parse_tool_call('{"tool": "bash", "command": "echo "hi""}')


@pytest.mark.anyio
async def test_shell_executor_success_and_failure() -> None:
    executor = ShellCommandExecutor(timeout_s=10)

    ok = await executor.execute("echo hello")
    assert ok.success is True
    assert ok.output == "hello\n"

    failed = await executor.execute("exit 3")
    assert failed.success is False
    assert failed.error == "Command failed: exit 3"


@pytest.mark.anyio
async def test_shell_executor_falls_back_to_stderr() -> None:
    executor = ShellCommandExecutor(timeout_s=10)
    result = await executor.execute(f'"{sys.executable}" -c "import sys; sys.stderr.write(\'warn\')"')
    assert result.success is True
    assert result.output == "warn"


@pytest.mark.anyio
async def test_shell_executor_times_out() -> None:
    result = await ShellCommandExecutor(timeout_s=0.2).execute("sleep 5")
    assert result.success is False
    assert result.error is not None
    assert result.error.startswith("Command timed out")
