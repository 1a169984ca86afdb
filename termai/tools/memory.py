"""Memory tool: session-scoped notes the agent can save and recall."""

from typing import Any

from termai.tools.registry import MemoryStore, Tool, ToolResult


class MemoryTool(Tool):
    """Store and recall notes during task execution."""

    name = "memory"
    description = "Store and recall notes during task execution. Args: action ('save'/'recall'/'list'), key (for save/recall), value (for save)"
    parameters = {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "description": "Action to perform",
                "enum": ["save", "recall", "list"],
            },
            "key": {"type": "string", "description": "Key for save/recall operations"},
            "value": {"type": "string", "description": "Value to save (required for save action)"},
        },
        "required": ["action"],
    }

    def __init__(self, store: MemoryStore):
        self.store = store

    async def execute(
        self,
        action: str | None = None,
        key: str | None = None,
        value: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not action:
            return ToolResult.fail("Missing required argument: action (save/recall/list)")

        action = action.lower()
        if action == "save":
            if not key:
                return ToolResult.fail("Missing required argument: key")
            if value is None:
                return ToolResult.fail("Missing required argument: value")
            self.store.save(key, value)
            return ToolResult.ok(f"Saved '{key}'")
        if action == "recall":
            if not key:
                return ToolResult.fail("Missing required argument: key")
            stored = self.store.recall(key)
            if stored is None:
                return ToolResult.ok(f"No value stored for '{key}'")
            return ToolResult.ok(stored)
        if action == "list":
            keys = self.store.list()
            if not keys:
                return ToolResult.ok("No stored memories")
            return ToolResult.ok(f"Stored keys: {', '.join(keys)}")
        return ToolResult.fail(f"Unknown action: {action}. Use save/recall/list")
