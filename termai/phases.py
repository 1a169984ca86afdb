"""Execution phase state machine.

Phases form a closed sum type: every phase is a frozen dataclass subclass of
``ExecutionPhase`` tagged with a ``PhaseKind``. Transition rules live in
``TRANSITIONS``, a plain table keyed by kind, and ``can_transition`` is the
only function that reads it. ``PhaseMachine`` is the single holder of the
current phase for an agent run; it consults ``can_transition`` before every
mutation and refuses (logs and no-ops) illegal requests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar

from termai.exceptions import PhaseTransitionError
from termai.logging import get_logger

log = get_logger(__name__)


class PhaseKind(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    DECIDING = "deciding"
    SETTING_GOAL = "setting_goal"
    PLANNING = "planning"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    VERIFYING = "verifying"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    WAITING_FOR_FILE_LOCK = "waiting_for_file_lock"


TERMINAL_KINDS = frozenset(
    {PhaseKind.IDLE, PhaseKind.COMPLETED, PhaseKind.FAILED, PhaseKind.CANCELLED}
)

_K = PhaseKind
TRANSITIONS: dict[PhaseKind, frozenset[PhaseKind]] = {
    _K.IDLE: frozenset({_K.STARTING}),
    _K.STARTING: frozenset({_K.DECIDING, _K.FAILED, _K.CANCELLED}),
    _K.DECIDING: frozenset({_K.SETTING_GOAL, _K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.SETTING_GOAL: frozenset({_K.PLANNING, _K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.PLANNING: frozenset({_K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.EXECUTING: frozenset(
        {
            _K.EXECUTING,
            _K.REFLECTING,
            _K.VERIFYING,
            _K.SUMMARIZING,
            _K.WAITING_FOR_APPROVAL,
            _K.WAITING_FOR_FILE_LOCK,
            _K.COMPLETED,
            _K.FAILED,
            _K.CANCELLED,
        }
    ),
    _K.REFLECTING: frozenset({_K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.WAITING_FOR_APPROVAL: frozenset({_K.EXECUTING, _K.CANCELLED}),
    _K.WAITING_FOR_FILE_LOCK: frozenset({_K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.VERIFYING: frozenset(
        {_K.COMPLETED, _K.SUMMARIZING, _K.EXECUTING, _K.FAILED, _K.CANCELLED}
    ),
    _K.SUMMARIZING: frozenset({_K.COMPLETED, _K.FAILED, _K.CANCELLED}),
    _K.COMPLETED: frozenset({_K.IDLE}),
    _K.FAILED: frozenset({_K.IDLE}),
    _K.CANCELLED: frozenset({_K.IDLE}),
}


@dataclass(frozen=True)
class ExecutionPhase:
    """Base class for all phases. Use the concrete subclasses."""

    kind: ClassVar[PhaseKind]

    @property
    def description(self) -> str:
        return self.kind.value.replace("_", " ").capitalize()

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @property
    def is_active(self) -> bool:
        return not self.is_terminal

    @property
    def requires_user_action(self) -> bool:
        return self.kind is PhaseKind.WAITING_FOR_APPROVAL

    @property
    def current_step(self) -> int:
        return 0

    @property
    def estimated_steps(self) -> int:
        return 0

    @property
    def progress(self) -> float | None:
        """Fraction of estimated steps done; None when indeterminate."""
        return None

    def __str__(self) -> str:
        return self.description


@dataclass(frozen=True)
class Idle(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.IDLE

    @property
    def description(self) -> str:
        return ""


@dataclass(frozen=True)
class Starting(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.STARTING


@dataclass(frozen=True)
class Deciding(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.DECIDING


@dataclass(frozen=True)
class SettingGoal(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.SETTING_GOAL


@dataclass(frozen=True)
class Planning(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.PLANNING


@dataclass(frozen=True)
class Executing(ExecutionPhase):
    """Working on a step. ``estimated_total`` of 0 means unknown."""

    kind: ClassVar[PhaseKind] = PhaseKind.EXECUTING
    step: int = 1
    estimated_total: int = 0

    @property
    def description(self) -> str:
        if self.estimated_total > 0:
            return f"Step {self.step}/{self.estimated_total}"
        return f"Step {self.step}"

    @property
    def current_step(self) -> int:
        return self.step

    @property
    def estimated_steps(self) -> int:
        return self.estimated_total

    @property
    def progress(self) -> float | None:
        if self.estimated_total <= 0:
            return None
        return min(1.0, max(0.0, self.step / self.estimated_total))


@dataclass(frozen=True)
class Reflecting(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.REFLECTING
    iteration: int = 1

    @property
    def description(self) -> str:
        return f"Reflecting (iter {self.iteration})"


@dataclass(frozen=True)
class Verifying(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.VERIFYING


@dataclass(frozen=True)
class Summarizing(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.SUMMARIZING


@dataclass(frozen=True)
class Completed(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.COMPLETED


@dataclass(frozen=True)
class Failed(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.FAILED
    reason: str = ""

    @property
    def description(self) -> str:
        return f"Failed: {self.reason}"


@dataclass(frozen=True)
class Cancelled(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.CANCELLED


@dataclass(frozen=True)
class WaitingForApproval(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.WAITING_FOR_APPROVAL
    command: str = ""

    @property
    def description(self) -> str:
        return "Awaiting approval"


@dataclass(frozen=True)
class WaitingForFileLock(ExecutionPhase):
    kind: ClassVar[PhaseKind] = PhaseKind.WAITING_FOR_FILE_LOCK
    file: str = ""

    @property
    def description(self) -> str:
        return f"Waiting for {os.path.basename(self.file) or self.file}"


def can_transition(current: ExecutionPhase, new: ExecutionPhase) -> bool:
    """Return whether ``current -> new`` is a legal phase transition."""
    return new.kind in TRANSITIONS.get(current.kind, frozenset())


PhaseListener = Callable[[ExecutionPhase, ExecutionPhase], None]


class PhaseMachine:
    """Authoritative holder of the current phase for one agent run."""

    def __init__(self, initial: ExecutionPhase | None = None):
        self._phase: ExecutionPhase = initial or Idle()
        self._history: list[ExecutionPhase] = [self._phase]
        self._listeners: list[PhaseListener] = []

    @property
    def phase(self) -> ExecutionPhase:
        return self._phase

    @property
    def history(self) -> list[ExecutionPhase]:
        return list(self._history)

    def add_listener(self, listener: PhaseListener) -> None:
        """Subscribe to (old, new) phase changes."""
        self._listeners.append(listener)

    def can_transition(self, new: ExecutionPhase) -> bool:
        return can_transition(self._phase, new)

    def transition(self, new: ExecutionPhase, *, strict: bool = False) -> bool:
        """Move to ``new`` if the adjacency table allows it.

        Illegal requests are logged and ignored; with ``strict`` they raise
        ``PhaseTransitionError`` instead.
        """
        old = self._phase
        if not can_transition(old, new):
            log.error(
                "Illegal phase transition ignored",
                current=old.kind.value,
                requested=new.kind.value,
            )
            if strict:
                raise PhaseTransitionError(old.kind.value, new.kind.value)
            return False

        self._phase = new
        self._history.append(new)
        log.debug("Phase transition", current=old.kind.value, new=new.kind.value)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception as e:
                log.warning("Phase listener failed", error=str(e))
        return True

    def reset(self) -> bool:
        """Return a finished run to idle. No-op if already idle."""
        if self._phase.kind is PhaseKind.IDLE:
            return True
        return self.transition(Idle())
