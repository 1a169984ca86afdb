import pytest

from termai.exceptions import PhaseTransitionError
from termai.phases import (
    TRANSITIONS,
    Cancelled,
    Completed,
    Deciding,
    Executing,
    Failed,
    Idle,
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
    can_transition,
)

ALL_PHASES = [
    Idle(),
    Starting(),
    Deciding(),
    SettingGoal(),
    Planning(),
    Executing(2, 5),
    Reflecting(1),
    Verifying(),
    Summarizing(),
    Completed(),
    Failed("x"),
    Cancelled(),
    WaitingForApproval("rm -rf build"),
    WaitingForFileLock("/src/app.py"),
]


def test_every_phase_kind_has_an_entry():
    assert set(TRANSITIONS) == set(PhaseKind)
    assert {phase.kind for phase in ALL_PHASES} == set(PhaseKind)


def test_only_executing_may_transition_to_itself():
    for phase in ALL_PHASES:
        same = type(phase)()
        assert can_transition(phase, same) is (phase.kind is PhaseKind.EXECUTING)


def test_terminal_phases_only_reset_to_idle():
    for terminal in (Completed(), Failed("boom"), Cancelled()):
        allowed = [phase.kind for phase in ALL_PHASES if can_transition(terminal, phase)]
        assert allowed == [PhaseKind.IDLE]


def test_idle_only_starts():
    allowed = [phase.kind for phase in ALL_PHASES if can_transition(Idle(), phase)]

    assert allowed == [PhaseKind.STARTING]


def test_selected_pairs():
    assert can_transition(Deciding(), Executing())
    assert not can_transition(Deciding(), Planning())
    assert can_transition(SettingGoal(), Executing())
    assert can_transition(WaitingForApproval("ls"), Executing())
    assert not can_transition(WaitingForApproval("ls"), Failed("no"))
    assert can_transition(WaitingForFileLock("/f"), Failed("timeout"))
    assert can_transition(Verifying(), Executing())
    assert not can_transition(Summarizing(), Executing())


def test_observer_projection():
    assert Executing(3, 0).progress is None
    assert Executing(3, 0).description == "Step 3"
    assert Executing(2, 4).progress == 0.5
    assert Executing(2, 4).description == "Step 2/4"
    assert Executing(2, 4).current_step == 2
    assert Executing(2, 4).estimated_steps == 4
    assert WaitingForApproval("ls").requires_user_action is True
    assert WaitingForFileLock("/a/b/main.py").description == "Waiting for main.py"
    assert Reflecting(2).description == "Reflecting (iter 2)"
    assert Failed("disk full").description == "Failed: disk full"
    assert Idle().is_terminal and not Idle().is_active
    assert Executing().is_active


def test_machine_ignores_illegal_transitions_and_notifies_listeners():
    machine = PhaseMachine()
    seen = []
    machine.add_listener(lambda old, new: seen.append((old.kind, new.kind)))

    assert machine.transition(Executing()) is False
    assert machine.phase == Idle()

    assert machine.transition(Starting()) is True
    assert machine.transition(Deciding()) is True
    assert machine.transition(Executing(1, 3)) is True
    assert machine.transition(Executing(2, 2)) is True

    assert machine.phase == Executing(2, 2)
    assert seen[0] == (PhaseKind.IDLE, PhaseKind.STARTING)
    assert len(machine.history) == 5


def test_machine_strict_mode_raises():
    machine = PhaseMachine()

    with pytest.raises(PhaseTransitionError):
        machine.transition(Completed(), strict=True)


def test_machine_reset_from_terminal():
    machine = PhaseMachine(Failed("boom"))

    assert machine.reset() is True
    assert machine.phase == Idle()
    assert machine.reset() is True


def test_listener_errors_do_not_break_transitions():
    machine = PhaseMachine()

    def broken(old, new):
        raise RuntimeError("listener bug")

    machine.add_listener(broken)

    assert machine.transition(Starting()) is True
    assert machine.phase == Starting()
