"""Write tool for creating, overwriting or appending to files."""

import os
from pathlib import Path
from typing import Any

from termai.logging import get_logger
from termai.tools.paths import read_text, resolve_path
from termai.tools.registry import FileChange, FileOperationTool, FileOperationType, ToolResult

log = get_logger(__name__)


class WriteFileTool(FileOperationTool):
    """Write content to files."""

    name = "write_file"
    description = (
        "Create a NEW file or COMPLETELY REWRITE an existing file. For small edits to existing "
        "files, prefer edit_file, insert_lines, or delete_lines instead. "
        "Args: path (required), content (required), mode ('overwrite' or 'append', default: overwrite)"
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to write",
            },
            "content": {
                "type": "string",
                "description": "Content to write to the file",
            },
            "mode": {
                "type": "string",
                "description": "Write mode: 'overwrite' (default) or 'append'",
                "enum": ["overwrite", "append"],
            },
        },
        "required": ["path", "content"],
    }

    async def prepare_change(
        self,
        path: str | None = None,
        content: str | None = None,
        mode: str | None = None,
        **kwargs: Any,
    ) -> FileChange | None:
        if not path or content is None:
            return None
        resolved = resolve_path(path, kwargs.get("_cwd"))
        append = (mode or "overwrite") == "append"
        exists = os.path.exists(resolved)
        before = read_text(resolved) if exists else None

        if append and before is not None:
            after = before + content
        else:
            after = content

        if not exists:
            operation = FileOperationType.CREATE
        elif append:
            operation = FileOperationType.INSERT
        else:
            operation = FileOperationType.OVERWRITE
        return FileChange(
            file_path=resolved,
            operation_type=operation,
            before_content=before,
            after_content=after,
        )

    async def execute(
        self,
        path: str | None = None,
        content: str | None = None,
        mode: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        """Write content to a file."""
        if not path:
            return ToolResult.fail("Missing required argument: path")
        if content is None:
            return ToolResult.fail("Missing required argument: content")

        resolved = resolve_path(path, kwargs.get("_cwd"))
        append = (mode or "overwrite") == "append"
        file_change = await self.prepare_change(path=path, content=content, mode=mode, **kwargs)

        try:
            file_path = Path(resolved)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            if append and file_path.exists():
                with open(file_path, "a", encoding="utf-8") as f:
                    f.write(content)
                return ToolResult.ok(f"Appended {len(content)} chars to {resolved}", file_change=file_change)
            file_path.write_text(content, encoding="utf-8")
            return ToolResult.ok(f"Wrote {len(content)} chars to {resolved}", file_change=file_change)
        except OSError as e:
            log.error("Write failed", path=resolved, error=str(e))
            return ToolResult.fail(f"Error writing file: {e}")
