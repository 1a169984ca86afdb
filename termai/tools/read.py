"""Read tool for reading file contents."""

import os
from pathlib import Path
from typing import Any

from termai.config import get_config
from termai.logging import get_logger
from termai.tools.paths import not_found_message, numbered, resolve_path
from termai.tools.registry import Tool, ToolResult, parse_int

log = get_logger(__name__)


def head_tail(content: str, max_chars: int, head_ratio: float = 0.6) -> str:
    """Keep the start and end of ``content``, dropping the middle."""
    if len(content) <= max_chars:
        return content
    head_chars = int(max_chars * head_ratio)
    tail_chars = max_chars - head_chars
    omitted = len(content) - head_chars - tail_chars
    return (
        content[:head_chars]
        + f"\n\n... [{omitted} chars omitted] ...\n\n"
        + content[len(content) - tail_chars :]
    )


class ReadFileTool(Tool):
    """Read file contents."""

    name = "read_file"
    description = "Read contents of a file. Args: path (required), start_line (optional), end_line (optional)"
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to read",
            },
            "start_line": {
                "type": "integer",
                "description": "Starting line number (1-based, optional)",
            },
            "end_line": {
                "type": "integer",
                "description": "Ending line number (1-based, inclusive, optional)",
            },
        },
        "required": ["path"],
    }

    def __init__(self, max_chars: int | None = None):
        self.max_chars = max_chars or get_config().tools.read_file.max_chars

    async def execute(
        self,
        path: str | None = None,
        start_line: str | None = None,
        end_line: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        """Read a file, optionally a 1-based inclusive line range."""
        if not path:
            return ToolResult.fail("Missing required argument: path")

        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.isfile(resolved):
            return ToolResult.fail(not_found_message("File", path, resolved))

        try:
            content = Path(resolved).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Read failed", path=resolved, error=str(e))
            return ToolResult.fail(f"Error reading file: {e}")

        start = parse_int(start_line)
        if start is not None:
            lines = content.split("\n")
            end = parse_int(end_line)
            first = max(0, start - 1)
            last = min(len(lines), end if end is not None else len(lines))
            if first >= len(lines):
                return ToolResult.fail(
                    f"Start line {start} exceeds file length ({len(lines)} lines)"
                )
            return ToolResult.ok(numbered(lines[first:last], first + 1))

        if len(content) > self.max_chars:
            line_count = len(content.split("\n"))
            truncated = head_tail(content, self.max_chars)
            return ToolResult.ok(
                f"File has {line_count} lines, {len(content)} chars. "
                f"Use start_line/end_line for specific sections.\n\n{truncated}"
            )
        return ToolResult.ok(content)
