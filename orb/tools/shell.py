from __future__ import annotations

import asyncio

from orb.errors import ToolExecutionFailure
from orb.orchestrator.events import CommandResult
from orb.telemetry.logging import get_logger


class ShellCommandExecutor:
    """Runs model-requested commands through the user's shell.

    No sandboxing happens here; every command is logged before it runs.
    """

    def __init__(self, timeout_s: float = 30.0, cwd: str | None = None) -> None:
        self._timeout_s = timeout_s
        self._cwd = cwd
        self._logger = get_logger(__name__)

    async def execute(self, command: str) -> CommandResult:
        self._logger.warning("tool.shell.execute", command=command)
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
            )
        except (OSError, ValueError) as exc:
            raise ToolExecutionFailure(f"could not start '{command}': {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            self._logger.error("tool.shell.timeout", command=command, timeout=self._timeout_s)
            return CommandResult(success=False, error=f"Command timed out after {self._timeout_s}s: {command}")

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            self._logger.error("tool.shell.failed", command=command, returncode=proc.returncode)
            detail = err or out
            message = f"Command failed: {command}"
            return CommandResult(success=False, error=f"{message}\n{detail}" if detail else message)
        return CommandResult(success=True, output=out or err)


__all__ = ["ShellCommandExecutor"]
