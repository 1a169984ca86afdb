"""Shell tool for executing commands through an injected executor."""

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Protocol

from termai.config import get_config
from termai.exceptions import ToolNotConfiguredError
from termai.logging import get_logger
from termai.tools.registry import Tool, ToolResult

log = get_logger(__name__)


@dataclass
class ShellCommandResult:
    success: bool
    output: str
    exit_code: int


class ShellCommandExecutor(Protocol):
    """Runs a shell command on behalf of the shell tool."""

    async def execute_shell_command(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ShellCommandResult: ...


class SubprocessShellExecutor:
    """Executor that runs each command in a fresh ``/bin/sh -c`` subprocess."""

    def __init__(self, shell: str | None = None, timeout: float | None = None, max_output_chars: int | None = None):
        cfg = get_config().tools.shell
        self.shell = shell or cfg.shell
        self.timeout = float(timeout or cfg.timeout)
        self.max_output_chars = max_output_chars or cfg.max_output_chars

    async def execute_shell_command(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ShellCommandResult:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            cwd: Working directory
            timeout: Optional timeout override in seconds
            abort_event: Kills the command when set

        Returns:
            ShellCommandResult with combined output and exit code
        """
        timeout = max(1.0, float(timeout or self.timeout))
        if abort_event is not None and abort_event.is_set():
            return ShellCommandResult(False, "Command aborted", -1)

        env = os.environ.copy()
        env["PATH"] = os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")

        log.info("Executing shell command", command=command, timeout=timeout)
        process = await asyncio.create_subprocess_exec(
            self.shell,
            "-c",
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd or None,
            env=env,
        )

        communicate_task = asyncio.create_task(process.communicate())
        abort_wait_task: asyncio.Task[bool] | None = None
        if abort_event is not None:
            abort_wait_task = asyncio.create_task(abort_event.wait())
        try:
            wait_tasks: set[asyncio.Task[Any]] = {communicate_task}
            if abort_wait_task is not None:
                wait_tasks.add(abort_wait_task)
            done, _ = await asyncio.wait(wait_tasks, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

            if communicate_task in done:
                stdout, stderr = await communicate_task
            else:
                await _kill(process, communicate_task)
                if abort_wait_task is not None and abort_wait_task in done:
                    return ShellCommandResult(False, "Command aborted", -1)
                label = int(timeout) if timeout.is_integer() else timeout
                return ShellCommandResult(False, f"Command timed out after {label}s", -1)
        except asyncio.CancelledError:
            await _kill(process, communicate_task)
            raise
        finally:
            if abort_wait_task is not None and not abort_wait_task.done():
                abort_wait_task.cancel()
                try:
                    await abort_wait_task
                except asyncio.CancelledError:
                    pass

        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()
        output = stdout_text
        if stderr_text:
            output = f"{output}\n[stderr] {stderr_text}" if output else f"[stderr] {stderr_text}"
        if len(output) > self.max_output_chars:
            output = output[: self.max_output_chars] + f"\n... [truncated, {len(output)} total chars]"

        exit_code = process.returncode if process.returncode is not None else -1
        return ShellCommandResult(exit_code == 0, output, exit_code)


async def _kill(process: asyncio.subprocess.Process, communicate_task: asyncio.Task[Any]) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
    communicate_task.cancel()
    try:
        await communicate_task
    except (asyncio.CancelledError, OSError):
        pass


class ShellTool(Tool):
    """Execute shell commands."""

    name = "shell"
    description = "Execute a shell command. Args: command (required), timeout (optional - seconds to wait for output)"
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "Shell command to execute",
            },
            "timeout": {
                "type": "integer",
                "description": "Seconds to wait for command output (default: 300, use higher for long builds/tests)",
            },
        },
        "required": ["command"],
    }

    def __init__(self, executor: ShellCommandExecutor | None = None):
        self.executor = executor

    async def execute(self, command: str | None = None, timeout: str | None = None, **kwargs: Any) -> ToolResult:
        if not command:
            return ToolResult.fail("Missing required argument: command")
        if self.executor is None:
            return ToolResult.fail(str(ToolNotConfiguredError(self.name, "Shell command executor")))

        try:
            timeout_seconds = float(timeout) if timeout else None
        except ValueError:
            timeout_seconds = None

        result = await self.executor.execute_shell_command(
            command,
            cwd=kwargs.get("_cwd"),
            timeout=timeout_seconds,
            abort_event=kwargs.get("_abort_event"),
        )
        if result.success:
            output = result.output or f"(command completed with no output, exit code: {result.exit_code})"
            return ToolResult.ok(output)
        if not result.output:
            return ToolResult.fail(f"Command failed with exit code {result.exit_code}")
        return ToolResult.fail(f"Command failed (exit {result.exit_code}): {result.output}")
