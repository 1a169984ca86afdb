"""Custom exceptions for the TermAI agent core."""


class TermAIError(Exception):
    """Base exception for TermAI."""

    pass


class ConfigurationError(TermAIError):
    """Configuration-related errors."""

    pass


class ToolError(TermAIError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolNotConfiguredError(ToolError):
    """A late-bound collaborator was not injected before use."""

    def __init__(self, tool_name: str, collaborator: str):
        super().__init__(f"{collaborator} not configured. This is an internal error.")
        self.tool_name = tool_name
        self.collaborator = collaborator


class DuplicateToolError(ToolError):
    """A tool name was registered twice."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool already registered: {tool_name}")
        self.tool_name = tool_name


class PhaseTransitionError(TermAIError):
    """Illegal execution phase transition."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Illegal phase transition: {current} -> {requested}")
        self.current = current
        self.requested = requested


class CheckpointError(TermAIError):
    """Checkpoint ledger errors."""

    pass
