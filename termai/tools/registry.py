"""Tool registry and base tool class."""

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from termai.config import get_config
from termai.exceptions import DuplicateToolError, ToolExecutionError, ToolNotFoundError
from termai.logging import get_logger
from termai.modes import AgentMode
from termai.tools.paths import resolve_path

log = get_logger(__name__)


class FileOperationType(str, Enum):
    CREATE = "create"
    OVERWRITE = "overwrite"
    EDIT = "edit"
    INSERT = "insert"
    DELETE = "delete"
    DELETE_FILE = "delete_file"


class FileChange(BaseModel):
    """Preview of a file mutation, used for approval diffs and checkpoints."""

    file_path: str
    operation_type: FileOperationType
    before_content: str | None = None
    after_content: str | None = None
    old_text: str | None = None
    new_text: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def is_new_file(self) -> bool:
        return self.before_content is None and self.operation_type is FileOperationType.CREATE


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    output: str = ""
    error: str | None = None
    file_change: FileChange | None = None
    skip_result_message: bool = False

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.output or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    @classmethod
    def ok(cls, output: str, file_change: FileChange | None = None) -> "ToolResult":
        return cls(success=True, output=output, file_change=file_change)

    @classmethod
    def fail(
        cls,
        error: str,
        file_change: FileChange | None = None,
        skip_result_message: bool = False,
    ) -> "ToolResult":
        return cls(
            success=False,
            error=error,
            file_change=file_change,
            skip_result_message=skip_result_message,
        )

    def to_message(self) -> str:
        """Text fed back to the model as the tool result."""
        if self.success:
            return self.output
        return f"Error: {self.error}"


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    always_requires_approval: bool = False

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments, normalized to strings, plus
                ``_cwd`` and ``_abort_event`` runtime context

        Returns:
            ToolResult with success status and output
        """
        pass

    def accepted_arguments(self, arguments: dict[str, str]) -> dict[str, str]:
        """Keep only the keys declared under ``parameters["properties"]``."""
        declared = self.parameters.get("properties") or {}
        return {key: value for key, value in arguments.items() if key in declared}

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for LLM.

        Returns:
            OpenAI function-style definition
        """
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class FileOperationTool(Tool):
    """A tool that mutates a single file and can preview the change."""

    @abstractmethod
    async def prepare_change(self, **kwargs: Any) -> FileChange | None:
        """Compute the change without applying it. None when not computable."""
        pass

    def target_path(self, **kwargs: Any) -> str | None:
        """Resolved path this call would touch, for locking."""
        path = kwargs.get("path")
        if not path:
            return None
        return resolve_path(str(path), kwargs.get("_cwd"))


def parse_bool(value: Any, default: bool = False) -> bool:
    """Parse a normalized boolean argument."""
    if value is None or value == "":
        return default
    return str(value).strip().lower() == "true"


def parse_int(value: Any) -> int | None:
    """Parse a normalized integer argument; None when absent or invalid."""
    if value is None:
        return None
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not number.is_integer():
        return None
    return int(number)


def normalize_arguments(arguments: dict[str, Any] | None) -> dict[str, str]:
    """Stringify tool argument values (bool -> "true"/"false", containers -> JSON)."""
    normalized: dict[str, str] = {}
    for key, value in (arguments or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            normalized[key] = "true" if value else "false"
        elif isinstance(value, str):
            normalized[key] = value
        elif isinstance(value, (dict, list, tuple)):
            normalized[key] = json.dumps(value)
        elif isinstance(value, float) and value.is_integer():
            normalized[key] = str(int(value))
        else:
            normalized[key] = str(value)
    return normalized


SCOUT_TOOLS = frozenset(
    {
        "read_file",
        "list_dir",
        "search_files",
        "search_output",
        "check_process",
        "http_request",
        "memory",
    }
)
NAVIGATOR_TOOLS = SCOUT_TOOLS | {"create_plan"}
COPILOT_TOOLS = SCOUT_TOOLS | {
    "write_file",
    "edit_file",
    "insert_lines",
    "delete_lines",
    "delete_file",
    "plan_and_track",
}
PILOT_TOOLS = COPILOT_TOOLS | {"shell", "run_background", "stop_process"}

MODE_TOOLS: dict[AgentMode, frozenset[str]] = {
    AgentMode.SCOUT: SCOUT_TOOLS,
    AgentMode.NAVIGATOR: frozenset(NAVIGATOR_TOOLS),
    AgentMode.COPILOT: frozenset(COPILOT_TOOLS),
    AgentMode.PILOT: frozenset(PILOT_TOOLS),
}


class OutputMatch(BaseModel):
    command: str
    line_number: int
    matched_line: str
    context: str


class OutputEntry(BaseModel):
    command: str
    output: str
    timestamp: datetime = Field(default_factory=datetime.now)


class OutputBuffer:
    """Searchable history of recent command outputs, oldest evicted first."""

    def __init__(self, max_entries: int | None = None, max_total_size: int | None = None):
        cfg = get_config().output_buffer
        self.max_entries = max_entries if max_entries is not None else cfg.max_entries
        self.max_total_size = max_total_size if max_total_size is not None else cfg.max_total_size
        self._entries: list[OutputEntry] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def store(self, output: str, command: str) -> None:
        with self._lock:
            self._entries.append(OutputEntry(command=command, output=output))
            while len(self._entries) > self.max_entries:
                self._entries.pop(0)
            total = sum(len(entry.output) for entry in self._entries)
            while total > self.max_total_size and self._entries:
                removed = self._entries.pop(0)
                total -= len(removed.output)

    def search(self, pattern: str, context_lines: int = 3) -> list[OutputMatch]:
        needle = pattern.lower()
        with self._lock:
            entries = list(self._entries)
        matches: list[OutputMatch] = []
        for entry in entries:
            lines = entry.output.splitlines()
            for index, line in enumerate(lines):
                if needle not in line.lower():
                    continue
                start = max(0, index - context_lines)
                end = min(len(lines) - 1, index + context_lines)
                matches.append(
                    OutputMatch(
                        command=entry.command,
                        line_number=index + 1,
                        matched_line=line,
                        context="\n".join(lines[start : end + 1]),
                    )
                )
        return matches

    def get_full_output(self, command: str) -> str | None:
        with self._lock:
            for entry in reversed(self._entries):
                if entry.command == command:
                    return entry.output
        return None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class MemoryStore:
    """Session-scoped key/value notes."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, key: str, value: str) -> None:
        with self._lock:
            self._store[key] = value

    def recall(self, key: str) -> str | None:
        with self._lock:
            return self._store.get(key)

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._store)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self.output_buffer = OutputBuffer()
        self.memory_store = MemoryStore()

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools)

    def tools_for(self, mode: AgentMode | str) -> list[Tool]:
        """Tools visible in ``mode``, in registration order."""
        allowed = MODE_TOOLS[AgentMode.parse(mode)]
        return [tool for name, tool in self._tools.items() if name in allowed]

    def is_tool_available(self, name: str, mode: AgentMode | str) -> bool:
        return name in self._tools and name in MODE_TOOLS[AgentMode.parse(mode)]

    def tool_descriptions(self, mode: AgentMode | str | None = None) -> str:
        """One ``- name: description`` line per visible tool, for prompts."""
        tools = self.tools_for(mode) if mode is not None else list(self._tools.values())
        return "\n".join(f"- {tool.name}: {tool.description}" for tool in tools)

    def get_definitions(
        self,
        mode: AgentMode | str | None = None,
        provider: str = "openai",
    ) -> list[dict[str, Any]]:
        """Get tool definitions for a model provider.

        Args:
            mode: Only tools visible in this mode (all when None)
            provider: ``openai``, ``anthropic``, ``google`` or ``local``

        Returns:
            List of provider-formatted definitions
        """
        tools = self.tools_for(mode) if mode is not None else list(self._tools.values())
        return [_format_definition(tool.get_definition(), provider) for tool in tools]

    def google_tools_payload(self, mode: AgentMode | str | None = None) -> list[dict[str, Any]]:
        """The ``tools`` array for a Google Generative AI request."""
        declarations = self.get_definitions(mode, provider="google")
        if not declarations:
            return []
        return [{"functionDeclarations": declarations}]

    def set_shell_executor(self, executor: Any) -> None:
        self._bind("shell", "executor", executor)

    def set_plan_track_delegate(self, delegate: Any) -> None:
        self._bind("plan_and_track", "delegate", delegate)

    def set_create_plan_delegate(self, delegate: Any) -> None:
        self._bind("create_plan", "delegate", delegate)

    def _bind(self, tool_name: str, attribute: str, value: Any) -> None:
        tool = self._tools.get(tool_name)
        if tool is None:
            log.warning("Cannot bind collaborator to missing tool", tool=tool_name)
            return
        setattr(tool, attribute, value)

    def store_output(self, output: str, command: str) -> None:
        self.output_buffer.store(output, command)

    def clear_session(self) -> None:
        """Forget session caches (outputs and memory) without rebuilding tools."""
        self.output_buffer.clear()
        self.memory_store.clear()

    async def dispatch(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        cwd: str | None = None,
        mode: AgentMode | str | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Execute a tool by name. Never raises for tool-level failures.

        Args:
            name: Tool name
            arguments: Raw arguments from the model
            cwd: Working directory for relative paths
            mode: When given, hidden tools are reported as not found

        Returns:
            ToolResult from execution
        """
        tool = self._tools.get(name)
        if tool is None or (mode is not None and not self.is_tool_available(name, mode)):
            return ToolResult.fail(f"Tool not found: {name}")

        normalized = normalize_arguments(arguments)
        args = tool.accepted_arguments(normalized)
        if len(args) != len(normalized):
            log.debug("Ignoring undeclared tool arguments", tool=name, keys=sorted(set(normalized) - set(args)))
        try:
            log.info("Executing tool", tool=name, args=args)
            result = await tool.execute(**args, _cwd=cwd, _abort_event=abort_event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            return ToolResult.fail(str(ToolExecutionError(name, str(e))))

        if not isinstance(result, ToolResult):
            return ToolResult.fail(f"Tool '{name}' returned invalid result payload")
        log.info("Tool executed", tool=name, success=result.success)
        return result


def _format_definition(definition: dict[str, Any], provider: str) -> dict[str, Any]:
    provider = (provider or "openai").strip().lower()
    if provider == "anthropic":
        return {
            "name": definition["name"],
            "description": definition["description"],
            "input_schema": definition["parameters"],
        }
    if provider == "google":
        return dict(definition)
    return {"type": "function", "function": dict(definition)}
