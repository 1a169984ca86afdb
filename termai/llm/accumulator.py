"""Reassembles streamed tool-call fragments into complete calls."""

import asyncio
import json
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator

from termai.llm import (
    Done,
    ParsedToolCall,
    StopReason,
    StreamEvent,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallComplete,
    ToolCallStart,
    Usage,
)
from termai.logging import get_logger
from termai.recovery import AgentAPIError, ErrorKind

log = get_logger(__name__)


def parse_arguments(raw: str) -> dict[str, Any]:
    """Decode a JSON object; anything malformed or non-object becomes ``{}``."""
    try:
        value = json.loads(raw) if raw else {}
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


@dataclass
class AccumulatingToolCall:
    id: str
    name: str
    arguments: str = ""
    is_complete: bool = False

    def to_parsed(self) -> ParsedToolCall:
        return ParsedToolCall(id=self.id, name=self.name, arguments=parse_arguments(self.arguments))


class ToolCallAccumulator:
    """Thread-safe map of in-flight tool calls keyed by call id."""

    def __init__(self):
        self._calls: dict[str, AccumulatingToolCall] = {}
        self._lock = threading.Lock()

    def begin(self, call_id: str, name: str) -> None:
        with self._lock:
            self._calls[call_id] = AccumulatingToolCall(id=call_id, name=name)

    def append_argument_fragment(self, call_id: str, delta: str) -> None:
        """Append raw JSON text for ``call_id``. Unknown ids are ignored."""
        with self._lock:
            call = self._calls.get(call_id)
            if call is None:
                log.debug("Argument fragment for unknown tool call", call_id=call_id)
                return
            call.arguments += delta

    def raw_arguments(self, call_id: str) -> str | None:
        with self._lock:
            call = self._calls.get(call_id)
            return call.arguments if call is not None else None

    def complete(self, call_id: str) -> ParsedToolCall | None:
        with self._lock:
            call = self._calls.get(call_id)
            if call is None:
                return None
            call.is_complete = True
            raw = AccumulatingToolCall(call.id, call.name, call.arguments, True)
        return raw.to_parsed()

    def completed_calls(self) -> list[ParsedToolCall]:
        with self._lock:
            snapshot = [AccumulatingToolCall(c.id, c.name, c.arguments, c.is_complete) for c in self._calls.values()]
        return [call.to_parsed() for call in snapshot if call.is_complete]

    def all_calls(self) -> list[ParsedToolCall]:
        """Every tracked call, complete or not, in ``begin`` order."""
        with self._lock:
            snapshot = [AccumulatingToolCall(c.id, c.name, c.arguments, c.is_complete) for c in self._calls.values()]
        return [call.to_parsed() for call in snapshot]

    @property
    def has_pending(self) -> bool:
        """Whether any tracked call has not been completed yet."""
        with self._lock:
            return any(not call.is_complete for call in self._calls.values())

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()


@dataclass
class StreamResult:
    content: str | None
    tool_calls: list[ParsedToolCall] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    stop_reason: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


_END = object()


async def _next_event(iterator: AsyncIterator[StreamEvent], cancel_event: asyncio.Event | None) -> Any:
    if cancel_event is None:
        try:
            return await iterator.__anext__()
        except StopAsyncIteration:
            return _END

    if cancel_event.is_set():
        raise AgentAPIError(ErrorKind.CANCELLED)

    next_task = asyncio.ensure_future(iterator.__anext__())
    cancel_task = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        next_task.cancel()
        cancel_task.cancel()
        raise

    if next_task in done:
        cancel_task.cancel()
        try:
            return next_task.result()
        except StopAsyncIteration:
            return _END

    next_task.cancel()
    try:
        await next_task
    except (asyncio.CancelledError, StopAsyncIteration):
        pass
    raise AgentAPIError(ErrorKind.CANCELLED)


async def collect_stream(
    events: AsyncIterable[StreamEvent],
    accumulator: ToolCallAccumulator | None = None,
    cancel_event: asyncio.Event | None = None,
) -> StreamResult:
    """Consume one model turn's events into a ``StreamResult``.

    Calls that never received ``ToolCallComplete`` are completed at ``Done``.

    Raises:
        AgentAPIError: ``cancelled`` when ``cancel_event`` fires mid-stream
    """
    acc = accumulator or ToolCallAccumulator()
    acc.reset()
    text_parts: list[str] = []
    calls: list[ParsedToolCall] = []
    seen: set[str] = set()
    result = StreamResult(content=None)

    iterator = events.__aiter__()
    try:
        while True:
            event = await _next_event(iterator, cancel_event)
            if event is _END or isinstance(event, Done):
                break
            if isinstance(event, TextDelta):
                text_parts.append(event.text)
            elif isinstance(event, ToolCallStart):
                acc.begin(event.id, event.name)
            elif isinstance(event, ToolCallArgumentDelta):
                acc.append_argument_fragment(event.id, event.delta)
            elif isinstance(event, ToolCallComplete):
                parsed = event.call or acc.complete(event.id)
                if parsed is not None and parsed.id not in seen:
                    seen.add(parsed.id)
                    calls.append(parsed)
            elif isinstance(event, Usage):
                result.prompt_tokens = event.prompt_tokens
                result.completion_tokens = event.completion_tokens
            elif isinstance(event, StopReason):
                result.stop_reason = event.reason
    finally:
        close = getattr(iterator, "aclose", None)
        if close is not None:
            try:
                await close()
            except RuntimeError:
                pass

    for call in acc.all_calls():
        if call.id not in seen:
            acc.complete(call.id)
            seen.add(call.id)
            calls.append(call)

    content = "".join(text_parts)
    result.content = content or None
    result.tool_calls = calls
    return result
