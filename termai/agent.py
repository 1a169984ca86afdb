"""Agent run loop: model turns, tool dispatch, phases, checkpoints and recovery."""

import asyncio
import json
import os
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from termai.checkpoint import CheckpointLedger
from termai.config import Config, get_config
from termai.exceptions import ToolExecutionError
from termai.file_locks import FileLockTable
from termai.llm import LLMProvider, Message, ParsedToolCall, ToolDefinition
from termai.llm.accumulator import StreamResult, ToolCallAccumulator, collect_stream
from termai.logging import bind_run_context, get_logger
from termai.modes import AgentMode
from termai.phases import (
    Cancelled,
    Completed,
    Deciding,
    ExecutionPhase,
    Executing,
    Failed,
    PhaseKind,
    PhaseMachine,
    Planning,
    Reflecting,
    SettingGoal,
    Starting,
    Summarizing,
    Verifying,
    WaitingForApproval,
    WaitingForFileLock,
)
from termai.processes import ProcessManager, get_process_manager, sleep_or_cancelled
from termai.recovery import AgentAPIError, ErrorKind, RecoveryAction, classify_transport_error
from termai.tools.paths import read_text
from termai.tools.plan import PlanTracker, parse_task_list
from termai.tools.registry import FileOperationTool, FileOperationType, Tool, ToolRegistry, ToolResult, normalize_arguments
from termai.tools.shell import SubprocessShellExecutor

log = get_logger(__name__)

COMMAND_TOOLS = frozenset({"shell", "run_background"})

ApprovalHandler = Callable[[str, str], Awaitable[bool]]
Verifier = Callable[[str], Awaitable[str | None]]
ToolResultCallback = Callable[[ParsedToolCall, ToolResult], None]

SYSTEM_PROMPT = """You are TermAI, an agent working in a terminal.

Mode: {mode} - {mode_description}
Working directory: {cwd}

Available tools:
{tools}

Use plan_and_track to set a goal and checklist for multi-step work.
Reply without tool calls once the task is done."""

REFLECTION_PROMPT = """Pause and reflect on progress so far.
- What has been accomplished?
- Is the current approach working?
- What remains before the goal is met?
{checklist}Then continue with the next step."""


@dataclass
class RunOutcome:
    """How one ``AgentRunner.run`` call ended."""

    phase: ExecutionPhase
    final_text: str | None = None
    error: str | None = None
    iterations: int = 0
    api_error: AgentAPIError | None = None

    @property
    def success(self) -> bool:
        return self.phase.kind is PhaseKind.COMPLETED


class _StopRun(Exception):
    """Ends the current run. ``reason`` None means cancelled."""

    def __init__(self, reason: str | None = None):
        super().__init__(reason or "cancelled")
        self.reason = reason


class AgentRunner:
    """Drives one agent conversation against a model provider."""

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        process_manager: ProcessManager | None = None,
        ledger: CheckpointLedger | None = None,
        mode: AgentMode | str | None = None,
        cwd: str | None = None,
        config: Config | None = None,
        approval_handler: ApprovalHandler | None = None,
        file_locks: FileLockTable | None = None,
        verifier: Verifier | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ):
        self.config = config or get_config()
        self.provider = provider
        self.registry = registry
        self.process_manager = process_manager or get_process_manager()
        self.ledger = ledger or CheckpointLedger()
        self.mode = AgentMode.parse(mode or self.config.agent.mode)
        self.cwd = cwd or os.getcwd()
        self.approval_handler = approval_handler
        self.file_locks = file_locks or FileLockTable()
        self.verifier = verifier
        self.on_tool_result = on_tool_result

        self.agent_id = uuid.uuid4().hex[:8]
        self.phases = PhaseMachine()
        self.messages: list[Message] = []
        self.accumulator = ToolCallAccumulator()
        self.plan_tracker = PlanTracker()
        self.usage = {"prompt_tokens": 0, "completion_tokens": 0}
        self.step = 0
        self.estimated_total = 0
        self._reflections = 0
        self._last_reflection_step = 0
        self._cancel_event = asyncio.Event()

        self._bind_collaborators()

    def _bind_collaborators(self) -> None:
        if self.registry.has_tool("shell") and getattr(self.registry.get("shell"), "executor", None) is None:
            shell_cfg = self.config.tools.shell
            self.registry.set_shell_executor(
                SubprocessShellExecutor(
                    shell=shell_cfg.shell,
                    timeout=shell_cfg.timeout,
                    max_output_chars=shell_cfg.max_output_chars,
                )
            )
        if self.registry.has_tool("plan_and_track") and getattr(self.registry.get("plan_and_track"), "delegate", None) is None:
            self.registry.set_plan_track_delegate(self.plan_tracker)

    @property
    def phase(self) -> ExecutionPhase:
        return self.phases.phase

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Ask the current run to stop at its next suspension point."""
        log.info("Cancellation requested", agent=self.agent_id)
        self._cancel_event.set()

    def reset(self) -> None:
        """Forget the conversation and return to idle."""
        self.phases.reset()
        self.messages.clear()
        self.plan_tracker.clear()
        self.accumulator.reset()
        self.ledger.clear()
        self.registry.clear_session()
        self.step = 0
        self.estimated_total = 0

    def tool_definitions(self) -> list[ToolDefinition]:
        return [ToolDefinition(t.name, t.description, t.parameters) for t in self.registry.tools_for(self.mode)]

    def _system_prompt(self) -> str:
        return SYSTEM_PROMPT.format(
            mode=self.mode.value,
            mode_description=self.mode.description,
            cwd=self.cwd,
            tools=self.registry.tool_descriptions(self.mode),
        )

    async def run(self, user_request: str) -> RunOutcome:
        """Process one user request until completion, failure or cancellation."""
        with bind_run_context(agent=self.agent_id, mode=self.mode.value):
            return await self._run(user_request)

    async def _run(self, user_request: str) -> RunOutcome:
        self.phases.reset()
        self._cancel_event.clear()
        self.step = 0
        self.estimated_total = 0
        self._reflections = 0
        self._last_reflection_step = 0
        self.phases.transition(Starting())

        if not self.messages:
            self.messages.append(Message(role="system", content=self._system_prompt()))
        self.ledger.create_checkpoint(len(self.messages), user_request)
        self.messages.append(Message(role="user", content=user_request))
        self.phases.transition(Deciding())
        log.info("Agent run started")

        iterations = 0
        try:
            while True:
                if self.is_cancelled:
                    raise _StopRun()
                max_iterations = self.config.agent.max_iterations
                if max_iterations and iterations >= max_iterations:
                    raise _StopRun(f"Stopped after {iterations} iterations without finishing")
                iterations += 1

                try:
                    result = await self._stream_with_recovery()
                except AgentAPIError as e:
                    if e.kind is ErrorKind.CANCELLED:
                        raise _StopRun() from e
                    log.error("Model request failed", kind=e.kind.value, error=e.details or e.message)
                    self.phases.transition(Failed(e.message))
                    return RunOutcome(
                        self.phase,
                        error=e.details or e.message,
                        iterations=iterations,
                        api_error=e,
                    )

                if result.tool_calls:
                    await self._handle_tool_calls(result)
                    self._maybe_reflect()
                    continue

                final_text = result.content or ""
                self.messages.append(Message(role="assistant", content=final_text))
                if self.phase.kind is not PhaseKind.EXECUTING:
                    self.phases.transition(Executing(max(self.step, 1), self.estimated_total))

                if self.verifier is not None:
                    self.phases.transition(Verifying())
                    feedback = await self.verifier(final_text)
                    if feedback:
                        log.info("Verification requested more work")
                        self.messages.append(Message(role="user", content=feedback))
                        self.phases.transition(Executing(max(self.step, 1), self.estimated_total))
                        continue

                self.phases.transition(Summarizing())
                self.phases.transition(Completed())
                log.info("Agent run completed", iterations=iterations, steps=self.step)
                return RunOutcome(self.phase, final_text=final_text, iterations=iterations)
        except _StopRun as stop:
            if stop.reason is None:
                self.phases.transition(Cancelled())
                log.info("Agent run cancelled", iterations=iterations)
                return RunOutcome(self.phase, error="cancelled", iterations=iterations)
            self.phases.transition(Failed(stop.reason))
            log.warning("Agent run failed", reason=stop.reason)
            return RunOutcome(self.phase, error=stop.reason, iterations=iterations)
        except asyncio.CancelledError:
            self._cancel_event.set()
            self.phases.transition(Cancelled())
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
            log.error("Agent run crashed", error=reason, exc_info=True)
            self.phases.transition(Failed(reason))
            return RunOutcome(self.phase, error=reason, iterations=iterations)
        finally:
            self.ledger.finalize_current()

    async def _stream_once(self) -> StreamResult:
        events = self.provider.stream(list(self.messages), self.tool_definitions())
        result = await collect_stream(events, self.accumulator, self._cancel_event)
        self.usage["prompt_tokens"] += result.prompt_tokens
        self.usage["completion_tokens"] += result.completion_tokens
        if not result.content and not result.tool_calls:
            raise AgentAPIError(ErrorKind.EMPTY_RESPONSE, provider=self.provider.name)
        return result

    async def _stream_with_recovery(self) -> StreamResult:
        """Run one model turn, applying the error's recovery strategy."""
        attempt = 0
        context_reduced = False
        while True:
            try:
                return await self._stream_once()
            except AgentAPIError as e:
                error = e
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = classify_transport_error(e)

            if error.kind is ErrorKind.CANCELLED or self.is_cancelled:
                raise AgentAPIError(ErrorKind.CANCELLED)

            strategy = error.recovery_strategy
            if strategy.action is RecoveryAction.REDUCE_CONTEXT and not context_reduced:
                context_reduced = True
                if self._reduce_context():
                    log.warning("Context too long, retrying with fewer messages", messages=len(self.messages))
                    continue
            if strategy.is_retry and attempt < strategy.max_retries:
                attempt += 1
                delay = strategy.delay_for_attempt(attempt, self.config.agent.max_backoff_seconds)
                log.warning(
                    "Retrying model request",
                    kind=error.kind.value,
                    attempt=attempt,
                    max_retries=strategy.max_retries,
                    delay=delay,
                )
                if await sleep_or_cancelled(delay, self._cancel_event):
                    raise AgentAPIError(ErrorKind.CANCELLED)
                continue
            raise error

    def _reduce_context(self) -> bool:
        """Drop older messages, keeping the system prompt and the recent tail."""
        keep = max(1, self.config.agent.context_keep_messages)
        head = self.messages[:1] if self.messages and self.messages[0].role == "system" else []
        body = self.messages[len(head):]
        if len(body) <= keep:
            return False
        tail = body[-keep:]
        # A tool result must follow the assistant message that requested it.
        while tail and tail[0].role == "tool":
            tail = tail[1:]
        if not tail:
            return False
        self.messages = head + tail
        return True

    async def _handle_tool_calls(self, result: StreamResult) -> None:
        self.messages.append(
            Message(role="assistant", content=result.content or "", tool_calls=list(result.tool_calls))
        )
        for call in result.tool_calls:
            if self.is_cancelled:
                raise _StopRun()
            log.info("Executing tool", tool=call.name, call_id=call.id)
            tool_result = await self._execute_call(call)
            self.messages.append(
                Message(
                    role="tool",
                    content=tool_result.to_message(),
                    tool_call_id=call.id,
                    tool_name=call.name,
                )
            )
            if self.on_tool_result is not None and not tool_result.skip_result_message:
                self.on_tool_result(call, tool_result)

    def _begin_step(self) -> None:
        self.step += 1
        self.phases.transition(Executing(self.step, self.estimated_total))

    async def _execute_call(self, call: ParsedToolCall) -> ToolResult:
        available = self.registry.is_tool_available(call.name, self.mode)
        if not available:
            self._begin_step()
            return await self._dispatch(call)

        tool = self.registry.get(call.name)
        args = tool.accepted_arguments(normalize_arguments(call.arguments))
        if call.name == "plan_and_track" and args.get("goal"):
            return await self._execute_plan(call, args)

        self._begin_step()
        command = self._approval_command(tool, call.name, args)
        if command is not None and not await self._request_approval(call.name, command):
            return ToolResult.fail("User rejected the command. Do not retry it.", skip_result_message=True)

        if isinstance(tool, FileOperationTool):
            result = await self._execute_file_operation(tool, call, args)
        else:
            result = await self._dispatch(call)

        if call.name in COMMAND_TOOLS and args.get("command"):
            self.ledger.record_shell_command(args["command"])
            if call.name == "shell":
                self.registry.store_output(result.output or result.error or "", args["command"])
        return result

    async def _execute_file_operation(
        self, tool: FileOperationTool, call: ParsedToolCall, args: dict[str, str]
    ) -> ToolResult:
        """Lock the target path, snapshot it for rollback, then run the tool."""
        try:
            lock_path = tool.target_path(**args, _cwd=self.cwd)
        except Exception as e:
            log.error("Could not resolve tool target", tool=call.name, error=str(e))
            return ToolResult.fail(str(ToolExecutionError(call.name, str(e))))

        if lock_path is not None:
            await self._acquire_file_lock(lock_path)
        try:
            try:
                await self._record_snapshot(tool, args)
            except Exception as e:
                log.error("Could not snapshot file before change", tool=call.name, error=str(e))
                return ToolResult.fail(str(ToolExecutionError(call.name, str(e))))
            return await self._dispatch(call)
        finally:
            if lock_path is not None:
                self.file_locks.release(lock_path)

    async def _dispatch(self, call: ParsedToolCall) -> ToolResult:
        return await self.registry.dispatch(
            call.name,
            call.arguments,
            cwd=self.cwd,
            mode=self.mode,
            abort_event=self._cancel_event,
        )

    async def _execute_plan(self, call: ParsedToolCall, args: dict[str, str]) -> ToolResult:
        deciding = self.phase.kind is PhaseKind.DECIDING
        if deciding:
            self.phases.transition(SettingGoal())
        result = await self._dispatch(call)
        if result.success:
            self.estimated_total = len(parse_task_list(args.get("tasks")) or [])
        if deciding:
            self.phases.transition(Planning())
        self._begin_step()
        return result

    def _approval_command(self, tool: Tool, name: str, args: dict[str, str]) -> str | None:
        if name in COMMAND_TOOLS and self.config.agent.require_command_approval:
            return args.get("command", "")
        if tool.always_requires_approval:
            target = args.get("path") or json.dumps(args, sort_keys=True)
            return f"{name} {target}"
        return None

    async def _request_approval(self, tool_name: str, command: str) -> bool:
        if self.approval_handler is None:
            log.warning("No approval handler configured, allowing", tool=tool_name, command=command)
            return True

        self.phases.transition(WaitingForApproval(command))
        approval = asyncio.ensure_future(self.approval_handler(tool_name, command))
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({approval, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if approval not in done:
            approval.cancel()
            raise _StopRun()

        try:
            approved = bool(approval.result())
        except Exception as e:
            log.error("Approval handler failed, treating as rejection", tool=tool_name, error=str(e))
            approved = False
        log.info("Approval decision", tool=tool_name, approved=approved)
        self.phases.transition(Executing(self.step, self.estimated_total))
        return approved

    async def _acquire_file_lock(self, path: str) -> None:
        if not self.file_locks.is_locked(path):
            if await self.file_locks.acquire(path, owner=self.agent_id, cancel_event=self._cancel_event):
                return
            raise _StopRun()

        log.info("Waiting for file lock", path=path, holder=self.file_locks.owner(path))
        self.phases.transition(WaitingForFileLock(path))
        acquired = await self.file_locks.acquire(
            path,
            owner=self.agent_id,
            timeout=self.config.agent.file_lock_timeout,
            cancel_event=self._cancel_event,
        )
        if not acquired:
            if self.is_cancelled:
                raise _StopRun()
            raise _StopRun(f"Timed out waiting for file lock on {path}")
        self.phases.transition(Executing(self.step, self.estimated_total))

    async def _record_snapshot(self, tool: FileOperationTool, args: dict[str, str]) -> None:
        change = await tool.prepare_change(**args, _cwd=self.cwd)
        if change is not None:
            self.ledger.record_file_change(
                change.file_path,
                change.before_content,
                was_created=change.operation_type is FileOperationType.CREATE,
            )
            return
        path = tool.target_path(**args, _cwd=self.cwd)
        if path is None:
            return
        exists = os.path.exists(path)
        self.ledger.record_file_change(path, read_text(path) if exists else None, was_created=not exists)

    def _maybe_reflect(self) -> None:
        interval = self.config.agent.reflection_interval
        if interval <= 0 or self.step - self._last_reflection_step < interval:
            return
        if self.phase.kind is not PhaseKind.EXECUTING:
            return
        self._reflections += 1
        self._last_reflection_step = self.step
        self.phases.transition(Reflecting(self._reflections))

        checklist = self.plan_tracker.checklist
        status = f"\n{checklist.display}\n\n" if checklist is not None else ""
        self.messages.append(Message(role="user", content=REFLECTION_PROMPT.format(checklist=status)))
        self.phases.transition(Executing(self.step, self.estimated_total))
