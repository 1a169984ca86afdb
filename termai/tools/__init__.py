"""Tools package for TermAI."""

from termai.processes import ProcessManager, get_process_manager
from termai.tools.background import CheckProcessTool, RunBackgroundTool, StopProcessTool
from termai.tools.delete import DeleteFileTool
from termai.tools.edit import DeleteLinesTool, EditFileTool, InsertLinesTool
from termai.tools.http_request import HttpRequestTool
from termai.tools.listing import ListDirectoryTool, SearchFilesTool
from termai.tools.memory import MemoryTool
from termai.tools.plan import (
    CreatePlanDelegate,
    CreatePlanTool,
    PlanAndTrackTool,
    PlanStore,
    PlanTrackDelegate,
    PlanTracker,
)
from termai.tools.read import ReadFileTool
from termai.tools.registry import (
    MODE_TOOLS,
    FileChange,
    FileOperationTool,
    FileOperationType,
    MemoryStore,
    OutputBuffer,
    Tool,
    ToolRegistry,
    ToolResult,
)
from termai.tools.search_output import SearchOutputTool
from termai.tools.shell import (
    ShellCommandExecutor,
    ShellCommandResult,
    ShellTool,
    SubprocessShellExecutor,
)
from termai.tools.write import WriteFileTool


def build_default_registry(process_manager: ProcessManager | None = None) -> ToolRegistry:
    """Create a registry holding every built-in tool exactly once.

    Collaborators for ``shell``, ``plan_and_track`` and ``create_plan`` are
    injected afterwards with the registry's ``set_*`` methods.
    """
    manager = process_manager or get_process_manager()
    registry = ToolRegistry()
    for tool in (
        ReadFileTool(),
        WriteFileTool(),
        EditFileTool(),
        InsertLinesTool(),
        DeleteLinesTool(),
        DeleteFileTool(),
        ListDirectoryTool(),
        SearchFilesTool(),
        SearchOutputTool(registry.output_buffer),
        MemoryTool(registry.memory_store),
        RunBackgroundTool(manager),
        CheckProcessTool(manager),
        StopProcessTool(manager),
        HttpRequestTool(),
        ShellTool(),
        PlanAndTrackTool(),
        CreatePlanTool(),
    ):
        registry.register(tool)
    return registry


__all__ = [
    "MODE_TOOLS",
    "CheckProcessTool",
    "CreatePlanDelegate",
    "CreatePlanTool",
    "DeleteFileTool",
    "DeleteLinesTool",
    "EditFileTool",
    "FileChange",
    "FileOperationTool",
    "FileOperationType",
    "HttpRequestTool",
    "InsertLinesTool",
    "ListDirectoryTool",
    "MemoryStore",
    "MemoryTool",
    "OutputBuffer",
    "PlanAndTrackTool",
    "PlanStore",
    "PlanTrackDelegate",
    "PlanTracker",
    "ReadFileTool",
    "RunBackgroundTool",
    "SearchFilesTool",
    "SearchOutputTool",
    "ShellCommandExecutor",
    "ShellCommandResult",
    "ShellTool",
    "StopProcessTool",
    "SubprocessShellExecutor",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "WriteFileTool",
    "build_default_registry",
]
