import asyncio
from pathlib import Path

import pytest

from termai.tools.shell import ShellCommandResult, ShellTool, SubprocessShellExecutor


class FakeExecutor:
    def __init__(self, result: ShellCommandResult):
        self.result = result
        self.calls: list[tuple] = []

    async def execute_shell_command(self, command, cwd=None, timeout=None, abort_event=None):
        self.calls.append((command, cwd, timeout))
        return self.result


@pytest.mark.asyncio
async def test_shell_tool_without_executor_is_internal_error():
    result = await ShellTool().execute(command="ls")

    assert result.success is False
    assert result.error == "Shell command executor not configured. This is an internal error."


@pytest.mark.asyncio
async def test_shell_tool_reports_empty_output_and_failures():
    quiet = FakeExecutor(ShellCommandResult(True, "", 0))
    failing = FakeExecutor(ShellCommandResult(False, "", 2))
    noisy = FakeExecutor(ShellCommandResult(False, "bad flag", 1))

    ok = await ShellTool(quiet).execute(command="true", timeout="12", _cwd="/srv")
    failed = await ShellTool(failing).execute(command="false")
    described = await ShellTool(noisy).execute(command="ls -Z")

    assert ok.output == "(command completed with no output, exit code: 0)"
    assert quiet.calls == [("true", "/srv", 12.0)]
    assert failed.error == "Command failed with exit code 2"
    assert described.error == "Command failed (exit 1): bad flag"


@pytest.mark.asyncio
async def test_subprocess_executor_runs_in_cwd_and_captures_stderr(tmp_path: Path):
    executor = SubprocessShellExecutor(shell="/bin/sh", timeout=10, max_output_chars=1000)

    result = await executor.execute_shell_command("pwd; echo oops >&2; exit 3", cwd=str(tmp_path))

    assert result.success is False
    assert result.exit_code == 3
    assert str(tmp_path) in result.output
    assert "[stderr] oops" in result.output


@pytest.mark.asyncio
async def test_subprocess_executor_times_out():
    executor = SubprocessShellExecutor(shell="/bin/sh", timeout=1, max_output_chars=1000)

    result = await executor.execute_shell_command("sleep 5")

    assert result.success is False
    assert result.output == "Command timed out after 1s"


@pytest.mark.asyncio
async def test_subprocess_executor_aborts_on_event():
    executor = SubprocessShellExecutor(shell="/bin/sh", timeout=30, max_output_chars=1000)
    abort = asyncio.Event()
    asyncio.get_running_loop().call_later(0.2, abort.set)

    result = await executor.execute_shell_command("sleep 10", abort_event=abort)

    assert result.success is False
    assert result.output == "Command aborted"
