"""Directory listing and filename search tools."""

import asyncio
import fnmatch
import os
from typing import Any

from termai.logging import get_logger
from termai.tools.paths import not_found_message, resolve_path
from termai.tools.registry import Tool, ToolResult, parse_bool

log = get_logger(__name__)

MAX_LISTED_ENTRIES = 500
MAX_SEARCH_MATCHES = 200


def _walk(root: str, recursive: bool):
    """Yield (path, is_dir) for non-hidden entries under root."""
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for name in dirs:
            yield os.path.join(current, name), True
        for name in sorted(files):
            if not name.startswith("."):
                yield os.path.join(current, name), False
        if not recursive:
            break


def _list_entries(root: str, recursive: bool) -> list[str]:
    entries: list[tuple[str, bool]] = []
    for path, is_dir in _walk(root, recursive):
        entries.append((os.path.relpath(path, root), is_dir))
        if len(entries) > MAX_LISTED_ENTRIES:
            break
    return [f"{rel}/" if is_dir else rel for rel, is_dir in sorted(entries)]


def _search(root: str, pattern: str, recursive: bool) -> list[str]:
    matches: list[str] = []
    for path, _ in _walk(root, recursive):
        if fnmatch.fnmatchcase(os.path.basename(path), pattern):
            matches.append(os.path.relpath(path, root))
            if len(matches) > MAX_SEARCH_MATCHES:
                break
    return matches


class ListDirectoryTool(Tool):
    """List directory contents."""

    name = "list_dir"
    description = "List contents of a directory. Args: path (required), recursive (optional, 'true'/'false', default: false)"
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the directory to list"},
            "recursive": {"type": "boolean", "description": "List recursively (default: false)"},
        },
        "required": ["path"],
    }

    async def execute(self, path: str | None = None, recursive: str | None = None, **kwargs: Any) -> ToolResult:
        if not path:
            return ToolResult.fail("Missing required argument: path")
        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.isdir(resolved):
            return ToolResult.fail(not_found_message("Directory", path, resolved))

        try:
            loop = asyncio.get_running_loop()
            entries = await loop.run_in_executor(None, _list_entries, resolved, parse_bool(recursive))
        except OSError as e:
            log.error("List directory failed", path=resolved, error=str(e))
            return ToolResult.fail(f"Error listing directory: {e}")

        if not entries:
            return ToolResult.ok("(empty directory)")
        return ToolResult.ok("\n".join(entries))


class SearchFilesTool(Tool):
    """Find files by name pattern."""

    name = "search_files"
    description = "Search for files by name pattern. Args: path (required), pattern (required, e.g. '*.py'), recursive (optional, default: true)"
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory path to search in"},
            "pattern": {
                "type": "string",
                "description": "Glob pattern to match (e.g., '*.py', 'test_*.py')",
            },
            "recursive": {"type": "boolean", "description": "Search recursively (default: true)"},
        },
        "required": ["path", "pattern"],
    }

    async def execute(
        self,
        path: str | None = None,
        pattern: str | None = None,
        recursive: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not path:
            return ToolResult.fail("Missing required argument: path")
        if not pattern:
            return ToolResult.fail("Missing required argument: pattern")
        resolved = resolve_path(path, kwargs.get("_cwd"))
        if not os.path.isdir(resolved):
            return ToolResult.fail(not_found_message("Directory", path, resolved))

        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(
            None, _search, resolved, pattern, parse_bool(recursive, default=True)
        )
        if not matches:
            return ToolResult.ok(f"No files matching '{pattern}' found in {path}")
        return ToolResult.ok(f"Found {len(matches)} files:\n" + "\n".join(matches))
