"""In-place file editing tools: search/replace, line insert and line delete."""

import os
from pathlib import Path
from typing import Any

from termai.logging import get_logger
from termai.tools.paths import not_found_message, numbered, read_text, resolve_path
from termai.tools.registry import (
    FileChange,
    FileOperationTool,
    FileOperationType,
    ToolResult,
    parse_bool,
    parse_int,
)

log = get_logger(__name__)


def _replace(content: str, old_text: str, new_text: str, replace_all: bool) -> str:
    if replace_all:
        return content.replace(old_text, new_text)
    return content.replace(old_text, new_text, 1)


def _insert(content: str, line_number: int, insert: str) -> tuple[list[str], int, int]:
    lines = content.split("\n")
    index = min(line_number - 1, len(lines))
    new_lines = insert.split("\n")
    lines[index:index] = new_lines
    return lines, index, len(new_lines)


class EditFileTool(FileOperationTool):
    """Search and replace text in an existing file."""

    name = "edit_file"
    description = (
        "PREFERRED for modifying existing files. Search and replace specific text. "
        "Args: path (required), old_text (required - exact text to find, include enough context "
        "to be unique), new_text (required - replacement text), replace_all (optional, "
        "'true'/'false', default: false)"
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to edit"},
            "old_text": {
                "type": "string",
                "description": "Exact text to find and replace (must match exactly including whitespace)",
            },
            "new_text": {
                "type": "string",
                "description": "Replacement text (can be empty to delete)",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace all occurrences (default: false, only first match)",
            },
        },
        "required": ["path", "old_text", "new_text"],
    }

    async def prepare_change(
        self,
        path: str | None = None,
        old_text: str | None = None,
        new_text: str | None = None,
        replace_all: str | None = None,
        **kwargs: Any,
    ) -> FileChange | None:
        if not path or not old_text or new_text is None:
            return None
        resolved = resolve_path(path, kwargs.get("_cwd"))
        before = read_text(resolved)
        if before is None or old_text not in before:
            return None
        return FileChange(
            file_path=resolved,
            operation_type=FileOperationType.EDIT,
            before_content=before,
            after_content=_replace(before, old_text, new_text, parse_bool(replace_all)),
            old_text=old_text,
            new_text=new_text,
        )

    async def execute(
        self,
        path: str | None = None,
        old_text: str | None = None,
        new_text: str | None = None,
        replace_all: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not path:
            return ToolResult.fail("Missing required argument: path")
        if not old_text:
            return ToolResult.fail("Missing required argument: old_text (the text to find and replace)")
        if new_text is None:
            return ToolResult.fail(
                "Missing required argument: new_text (replacement text, can be empty string to delete)"
            )

        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.isfile(resolved):
            return ToolResult.fail(not_found_message("File", path, resolved))

        file_change = await self.prepare_change(
            path=path, old_text=old_text, new_text=new_text, replace_all=replace_all, **kwargs
        )
        try:
            content = Path(resolved).read_text(encoding="utf-8")
            if old_text not in content:
                lines = content.split("\n")
                preview = "\n".join(lines[:10])
                return ToolResult.fail(
                    "Text not found in file. The old_text must match exactly "
                    "(including whitespace/indentation).\n\n"
                    f"File has {len(lines)} lines. First 10 lines:\n{preview}"
                )

            occurrences = content.count(old_text)
            everything = parse_bool(replace_all)
            content = _replace(content, old_text, new_text, everything)
            Path(resolved).write_text(content, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Edit failed", path=resolved, error=str(e))
            return ToolResult.fail(f"Error editing file: {e}")

        result_lines = content.split("\n")
        preview = numbered(result_lines[:20], 1)
        suffix = f"\n... ({len(result_lines) - 20} more lines)" if len(result_lines) > 20 else ""
        count = f"{occurrences} occurrence(s)" if everything else "1 occurrence"
        return ToolResult.ok(
            f"Replaced {count} in {resolved}.\n\nFile preview:\n{preview}{suffix}",
            file_change=file_change,
        )


class InsertLinesTool(FileOperationTool):
    """Insert lines before a given 1-based line number."""

    name = "insert_lines"
    description = (
        "Insert lines at a specific position in a file. Args: path (required), line_number "
        "(required - 1-based, lines inserted BEFORE this line), content (required)"
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file"},
            "line_number": {
                "type": "integer",
                "description": "Line number where to insert (1-based, content inserted BEFORE this line)",
            },
            "content": {
                "type": "string",
                "description": "Content to insert (can be multiple lines)",
            },
        },
        "required": ["path", "line_number", "content"],
    }

    async def prepare_change(
        self,
        path: str | None = None,
        line_number: str | None = None,
        content: str | None = None,
        **kwargs: Any,
    ) -> FileChange | None:
        number = parse_int(line_number)
        if not path or number is None or number < 1 or content is None:
            return None
        resolved = resolve_path(path, kwargs.get("_cwd"))
        before = read_text(resolved)
        if before is None:
            return None
        lines, _, inserted = _insert(before, number, content)
        return FileChange(
            file_path=resolved,
            operation_type=FileOperationType.INSERT,
            before_content=before,
            after_content="\n".join(lines),
            start_line=number,
            end_line=number + inserted - 1,
        )

    async def execute(
        self,
        path: str | None = None,
        line_number: str | None = None,
        content: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not path:
            return ToolResult.fail("Missing required argument: path")
        number = parse_int(line_number)
        if number is None or number < 1:
            return ToolResult.fail("Missing or invalid line_number (must be >= 1)")
        if content is None:
            return ToolResult.fail("Missing required argument: content")

        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.isfile(resolved):
            return ToolResult.fail(not_found_message("File", path, resolved))

        file_change = await self.prepare_change(path=path, line_number=line_number, content=content, **kwargs)
        try:
            existing = Path(resolved).read_text(encoding="utf-8")
            stripped = content.strip()
            if stripped and stripped in existing:
                return ToolResult.ok(
                    "ALREADY EXISTS: The content you're trying to insert already exists in the file. "
                    "No changes made. Use read_file to verify the current state."
                )
            lines, index, inserted = _insert(existing, number, content)
            Path(resolved).write_text("\n".join(lines), encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Insert failed", path=resolved, error=str(e))
            return ToolResult.fail(f"Error inserting lines: {e}")

        first = max(0, index - 2)
        last = min(len(lines), index + inserted + 2)
        preview = numbered(lines[first:last], first + 1)
        return ToolResult.ok(
            f"Inserted {inserted} line(s) at line {number}.\n\nPreview around insertion:\n{preview}",
            file_change=file_change,
        )


class DeleteLinesTool(FileOperationTool):
    """Delete an inclusive 1-based line range."""

    name = "delete_lines"
    description = (
        "Delete a range of lines from a file. Args: path (required), start_line (required, 1-based), "
        "end_line (required, 1-based, inclusive)"
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file"},
            "start_line": {
                "type": "integer",
                "description": "Starting line number to delete (1-based)",
            },
            "end_line": {
                "type": "integer",
                "description": "Ending line number to delete (1-based, inclusive)",
            },
        },
        "required": ["path", "start_line", "end_line"],
    }

    async def prepare_change(
        self,
        path: str | None = None,
        start_line: str | None = None,
        end_line: str | None = None,
        **kwargs: Any,
    ) -> FileChange | None:
        start = parse_int(start_line)
        end = parse_int(end_line)
        if not path or start is None or start < 1 or end is None or end < start:
            return None
        resolved = resolve_path(path, kwargs.get("_cwd"))
        before = read_text(resolved)
        if before is None:
            return None
        lines = before.split("\n")
        if start - 1 < len(lines):
            del lines[start - 1 : min(len(lines), end)]
        return FileChange(
            file_path=resolved,
            operation_type=FileOperationType.DELETE,
            before_content=before,
            after_content="\n".join(lines),
            start_line=start,
            end_line=end,
        )

    async def execute(
        self,
        path: str | None = None,
        start_line: str | None = None,
        end_line: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not path:
            return ToolResult.fail("Missing required argument: path")
        start = parse_int(start_line)
        if start is None or start < 1:
            return ToolResult.fail("Missing or invalid start_line (must be >= 1)")
        end = parse_int(end_line)
        if end is None or end < start:
            return ToolResult.fail("Missing or invalid end_line (must be >= start_line)")

        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.isfile(resolved):
            return ToolResult.fail(not_found_message("File", path, resolved))

        file_change = await self.prepare_change(path=path, start_line=start_line, end_line=end_line, **kwargs)
        try:
            lines = Path(resolved).read_text(encoding="utf-8").split("\n")
            if start - 1 >= len(lines):
                return ToolResult.fail(f"start_line {start} exceeds file length ({len(lines)} lines)")
            last = min(len(lines), end)
            deleted = last - (start - 1)
            del lines[start - 1 : last]
            Path(resolved).write_text("\n".join(lines), encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Delete lines failed", path=resolved, error=str(e))
            return ToolResult.fail(f"Error deleting lines: {e}")

        return ToolResult.ok(f"Deleted {deleted} line(s) from {resolved}", file_change=file_change)
