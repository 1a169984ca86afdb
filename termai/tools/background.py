"""Tools for starting, inspecting and stopping background processes."""

from typing import Any

from termai.processes import ProcessManager
from termai.tools.registry import Tool, ToolResult, parse_bool, parse_int


class RunBackgroundTool(Tool):
    """Start a long-running process such as a dev server."""

    name = "run_background"
    description = (
        "Start a process in the background (e.g., a server). Args: command (required), wait_for "
        "(optional - text to wait for in output to confirm startup), timeout (optional - seconds "
        "to wait, default: 5)"
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "Command to run in the background"},
            "wait_for": {"type": "string", "description": "Text to wait for in output to confirm startup"},
            "timeout": {
                "type": "integer",
                "description": "Seconds to wait for startup confirmation (default: 5)",
            },
        },
        "required": ["command"],
    }

    def __init__(self, manager: ProcessManager):
        self.manager = manager

    async def execute(
        self,
        command: str | None = None,
        wait_for: str | None = None,
        timeout: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not command:
            return ToolResult.fail("Missing required argument: command")
        try:
            timeout_seconds = float(timeout) if timeout else 5.0
        except ValueError:
            timeout_seconds = 5.0

        result = await self.manager.start(
            command,
            cwd=kwargs.get("_cwd"),
            wait_for=wait_for or None,
            timeout=timeout_seconds,
            cancel_event=kwargs.get("_abort_event"),
        )
        if result.error:
            return ToolResult.fail(result.error)

        output = f"Started background process with PID: {result.pid}"
        if result.initial_output:
            output += f"\n\nInitial output:\n{result.initial_output[:1500]}"
        return ToolResult.ok(output)


class CheckProcessTool(Tool):
    """Report status of managed processes by pid, port or as a list."""

    name = "check_process"
    description = (
        "Check if a background process is running. Args: pid (optional - process ID), port "
        "(optional - check by port number), list (optional - 'true' to list all managed processes)"
    )
    parameters = {
        "type": "object",
        "properties": {
            "pid": {"type": "integer", "description": "Process ID to check"},
            "port": {"type": "integer", "description": "Port number to check for listening process"},
            "list": {"type": "boolean", "description": "List all managed background processes"},
        },
    }

    def __init__(self, manager: ProcessManager):
        self.manager = manager

    async def execute(
        self,
        pid: str | None = None,
        port: str | None = None,
        list: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if parse_bool(list):
            processes = self.manager.list_processes()
            if not processes:
                return ToolResult.ok("No managed background processes")
            lines = ["Managed background processes:"]
            for proc in processes:
                status = "RUNNING" if proc.running else "STOPPED"
                lines.append(f"  PID {proc.pid}: {status} (uptime: {int(proc.uptime)}s) - {proc.command[:50]}")
            return ToolResult.ok("\n".join(lines))

        process_id = parse_int(pid)
        if process_id is not None:
            result = self.manager.check(process_id)
            output = f"Process {process_id}: {'RUNNING' if result.running else 'NOT RUNNING'}"
            if result.output:
                output += f"\n\nRecent output:\n{result.output}"
            if result.error and result.error != f"Process {process_id} not found in manager":
                output += f"\n\nRecent errors:\n{result.error}"
            return ToolResult.ok(output)

        port_number = parse_int(port)
        if port_number is not None:
            result = await self.manager.check_port(port_number)
            output = f"Port {port_number}: {'IN USE' if result.in_use else 'FREE'}"
            if result.pid is not None:
                output += f" (PID: {result.pid})"
            if result.output:
                output += f"\n{result.output}"
            return ToolResult.ok(output)

        return ToolResult.fail("Must provide either 'pid', 'port', or 'list=true'")


class StopProcessTool(Tool):
    name = "stop_process"
    description = "Stop a background process. Args: pid (required - process ID to stop), all (optional - 'true' to stop all managed processes)"
    parameters = {
        "type": "object",
        "properties": {
            "pid": {"type": "integer", "description": "Process ID to stop"},
            "all": {"type": "boolean", "description": "Stop all managed background processes"},
        },
    }

    def __init__(self, manager: ProcessManager):
        self.manager = manager

    async def execute(self, pid: str | None = None, all: str | None = None, **kwargs: Any) -> ToolResult:
        if parse_bool(all):
            self.manager.stop_all()
            return ToolResult.ok("Stopped all managed background processes")

        process_id = parse_int(pid)
        if process_id is None:
            return ToolResult.fail("Missing required argument: pid")
        if self.manager.stop(process_id):
            return ToolResult.ok(f"Stopped process {process_id}")
        return ToolResult.fail(f"Process {process_id} not found or already stopped")
