"""Path resolution shared by file tools."""

import os
from pathlib import Path


def resolve_path(path: str, cwd: str | None = None) -> str:
    """Expand ``~`` and resolve a relative path against ``cwd`` when given."""
    expanded = os.path.expanduser(path)
    if os.path.isabs(expanded):
        return expanded
    if cwd:
        return str(Path(cwd) / expanded)
    return expanded


def not_found_message(kind: str, path: str, resolved: str) -> str:
    """Error text naming both the requested and the resolved path."""
    if path != resolved:
        return (
            f"{kind} not found: '{path}' (resolved to: '{resolved}'). "
            f"Use an absolute path like '/full/path/to/{'dir' if kind == 'Directory' else 'file'}' "
            "if CWD is unknown."
        )
    return f"{kind} not found: '{path}'. Use an absolute path if needed."


def read_text(path: str) -> str | None:
    """File contents as UTF-8 text, or None when unreadable."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def numbered(lines: list[str], first_line: int) -> str:
    return "\n".join(f"{first_line + offset}| {line}" for offset, line in enumerate(lines))
