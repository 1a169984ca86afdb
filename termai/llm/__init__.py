"""Provider-neutral model interface: messages, tool definitions and stream events."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: list["ParsedToolCall"] = field(default_factory=list)


@dataclass
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


@dataclass
class ParsedToolCall:
    """A fully received tool call with decoded arguments."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallArgumentDelta:
    id: str
    delta: str


@dataclass(frozen=True)
class ToolCallComplete:
    """Either a finished call, or just the id of an accumulated call."""

    id: str
    call: ParsedToolCall | None = None


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int


@dataclass(frozen=True)
class StopReason:
    reason: str


@dataclass(frozen=True)
class Done:
    pass


StreamEvent = Union[TextDelta, ToolCallStart, ToolCallArgumentDelta, ToolCallComplete, Usage, StopReason, Done]


class LLMProvider(ABC):
    """Abstract base class for model providers.

    Implementations translate their wire format into ``StreamEvent``s and
    raise ``AgentAPIError`` (or transport exceptions) on failure.
    """

    name: str = "provider"

    @abstractmethod
    def stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one model turn, terminated by exactly one ``Done``."""
        pass


__all__ = [
    "Done",
    "LLMProvider",
    "Message",
    "ParsedToolCall",
    "StopReason",
    "StreamEvent",
    "TextDelta",
    "ToolCallArgumentDelta",
    "ToolCallComplete",
    "ToolCallStart",
    "ToolDefinition",
    "Usage",
]
