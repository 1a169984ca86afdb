"""Search through previously captured command outputs."""

from typing import Any

from termai.tools.registry import OutputBuffer, Tool, ToolResult, parse_int

MAX_REPORTED_MATCHES = 20


class SearchOutputTool(Tool):
    name = "search_output"
    description = "Search through previous command outputs. Args: pattern (required), context_lines (optional, default: 3)"
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "Search pattern to find in previous outputs",
            },
            "context_lines": {
                "type": "integer",
                "description": "Number of context lines around matches (default: 3)",
            },
        },
        "required": ["pattern"],
    }

    def __init__(self, buffer: OutputBuffer):
        self.buffer = buffer

    async def execute(
        self,
        pattern: str | None = None,
        context_lines: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not pattern:
            return ToolResult.fail("Missing required argument: pattern")

        context = parse_int(context_lines)
        matches = self.buffer.search(pattern, context if context is not None else 3)
        if not matches:
            return ToolResult.ok(f"No matches found for '{pattern}'")

        output = [f"Found {len(matches)} matches for '{pattern}':\n"]
        for index, match in enumerate(matches[:MAX_REPORTED_MATCHES], start=1):
            output.append(f"--- Match {index} (from '{match.command}', line {match.line_number}) ---")
            output.append(match.context)
            output.append("")
        if len(matches) > MAX_REPORTED_MATCHES:
            output.append(f"... and {len(matches) - MAX_REPORTED_MATCHES} more matches")
        return ToolResult.ok("\n".join(output))
