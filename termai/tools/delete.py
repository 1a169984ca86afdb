"""Delete file tool. Always gated behind user approval."""

import os
from typing import Any

from termai.logging import get_logger
from termai.tools.paths import not_found_message, read_text, resolve_path
from termai.tools.registry import FileChange, FileOperationTool, FileOperationType, ToolResult

log = get_logger(__name__)


class DeleteFileTool(FileOperationTool):
    """Delete a file."""

    name = "delete_file"
    description = "Delete a file. ALWAYS requires user approval. Args: path (required)"
    always_requires_approval = True
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to delete"},
        },
        "required": ["path"],
    }

    async def prepare_change(self, path: str | None = None, **kwargs: Any) -> FileChange | None:
        if not path:
            return None
        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.exists(resolved):
            return None
        return FileChange(
            file_path=resolved,
            operation_type=FileOperationType.DELETE_FILE,
            before_content=read_text(resolved),
            after_content=None,
        )

    async def execute(self, path: str | None = None, **kwargs: Any) -> ToolResult:
        if not path:
            return ToolResult.fail("Missing required argument: path")
        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.exists(resolved):
            return ToolResult.fail(not_found_message("File", path, resolved))

        file_change = await self.prepare_change(path=path, **kwargs)
        try:
            os.remove(resolved)
        except OSError as e:
            log.error("Delete failed", path=resolved, error=str(e))
            return ToolResult.fail(f"Error deleting file: {e}")
        return ToolResult.ok(f"Deleted file: {resolved}", file_change=file_change)
