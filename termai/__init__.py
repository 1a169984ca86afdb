"""TermAI - orchestration core of a terminal AI agent."""

__version__ = "0.1.0"

from termai.agent import AgentRunner, RunOutcome
from termai.checkpoint import Checkpoint, CheckpointLedger, RollbackResult
from termai.config import Config, get_config, set_config
from termai.logging import configure_logging
from termai.modes import AgentMode
from termai.processes import ProcessManager
from termai.tools import ToolRegistry, build_default_registry

__all__ = [
    "AgentMode",
    "AgentRunner",
    "Checkpoint",
    "CheckpointLedger",
    "Config",
    "ProcessManager",
    "RollbackResult",
    "RunOutcome",
    "ToolRegistry",
    "__version__",
    "build_default_registry",
    "configure_logging",
    "get_config",
    "set_config",
]
