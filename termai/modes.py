"""Agent modes: capability tiers that gate tool visibility."""

from enum import Enum


class AgentMode(str, Enum):
    """Level of autonomy granted to the agent for a session."""

    SCOUT = "scout"
    NAVIGATOR = "navigator"
    COPILOT = "copilot"
    PILOT = "pilot"

    @classmethod
    def parse(cls, value: "AgentMode | str") -> "AgentMode":
        """Parse a mode from its value, case-insensitively."""
        if isinstance(value, AgentMode):
            return value
        return cls(str(value or "").strip().lower())

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def can_write_files(self) -> bool:
        return self in (AgentMode.COPILOT, AgentMode.PILOT)

    @property
    def can_execute_shell(self) -> bool:
        return self is AgentMode.PILOT

    @property
    def can_create_plans(self) -> bool:
        return self is AgentMode.NAVIGATOR


_DESCRIPTIONS = {
    AgentMode.SCOUT: "Read-only exploration",
    AgentMode.NAVIGATOR: "Create implementation plans",
    AgentMode.COPILOT: "File operations, no shell",
    AgentMode.PILOT: "Full autonomous agent",
}
