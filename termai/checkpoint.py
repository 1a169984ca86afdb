"""Per-turn checkpoints of file snapshots and shell commands, with rollback."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter

from termai.exceptions import CheckpointError
from termai.logging import get_logger

log = get_logger(__name__)

PREVIEW_CHARS = 100


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


class FileSnapshot(BaseModel):
    """State of a file before the agent first touched it in a checkpoint."""

    path: str
    content_before: str | None = None
    was_created: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def file_name(self) -> str:
        return Path(self.path).name

    @property
    def file_existed_before(self) -> bool:
        return not self.was_created


class Checkpoint(BaseModel):
    """Rollback unit for one user turn."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    message_index: int
    message_preview: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    file_snapshots: dict[str, FileSnapshot] = Field(default_factory=dict)
    shell_commands_run: list[str] = Field(default_factory=list)

    @property
    def modified_file_count(self) -> int:
        return len(self.file_snapshots)

    @property
    def has_shell_commands(self) -> bool:
        return bool(self.shell_commands_run)

    @property
    def has_changes(self) -> bool:
        return bool(self.file_snapshots) or bool(self.shell_commands_run)

    @property
    def modified_file_paths(self) -> list[str]:
        return sorted(self.file_snapshots)

    @property
    def created_files(self) -> list[FileSnapshot]:
        return [s for s in self.file_snapshots.values() if s.was_created]

    @property
    def modified_files(self) -> list[FileSnapshot]:
        return [s for s in self.file_snapshots.values() if not s.was_created]

    @property
    def short_description(self) -> str:
        parts = []
        if self.file_snapshots:
            parts.append(_plural(self.modified_file_count, "file"))
        if self.shell_commands_run:
            parts.append(_plural(len(self.shell_commands_run), "command"))
        return ", ".join(parts) if parts else "No changes"

    def record_file_change(self, path: str, content_before: str | None, was_created: bool) -> bool:
        """Capture the pre-change state of ``path``. The first snapshot wins."""
        if path in self.file_snapshots:
            return False
        self.file_snapshots[path] = FileSnapshot(path=path, content_before=content_before, was_created=was_created)
        return True

    def record_shell_command(self, command: str) -> None:
        self.shell_commands_run.append(command)


@dataclass
class RollbackResult:
    success: bool
    restored_files: list[str] = field(default_factory=list)
    failed_files: list[tuple[str, str]] = field(default_factory=list)
    messages_removed: int = 0
    shell_commands_warning: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        parts = []
        if self.restored_files:
            parts.append(f"Restored {_plural(len(self.restored_files), 'file')}")
        if self.failed_files:
            parts.append(f"Failed to restore {_plural(len(self.failed_files), 'file')}")
        if self.messages_removed > 0:
            parts.append(f"Removed {_plural(self.messages_removed, 'message')}")
        return ". ".join(parts) if parts else "No changes made"


@dataclass
class RollbackPreview:
    files: dict[str, FileSnapshot]
    shell_commands: list[str]
    messages_to_remove: int


_CHECKPOINT_LIST = TypeAdapter(list[Checkpoint])


class CheckpointLedger:
    """Ordered checkpoints for a session, plus the one being recorded."""

    def __init__(self):
        self._checkpoints: list[Checkpoint] = []
        self.current: Checkpoint | None = None

    @property
    def checkpoints(self) -> list[Checkpoint]:
        return list(self._checkpoints)

    def create_checkpoint(self, message_index: int, message_preview: str = "") -> Checkpoint:
        """Finalize the current checkpoint and open a new one."""
        self.finalize_current()
        self.current = Checkpoint(message_index=message_index, message_preview=message_preview[:PREVIEW_CHARS])
        log.debug("Checkpoint created", message_index=message_index, checkpoint_id=self.current.id)
        return self.current

    def record_file_change(
        self,
        path: str,
        content_before: str | None,
        was_created: bool,
        checkpoint: Checkpoint | None = None,
    ) -> bool:
        target = checkpoint or self.current
        if target is None:
            log.debug("No current checkpoint, file change not recorded", path=path)
            return False
        recorded = target.record_file_change(path, content_before, was_created)
        if recorded:
            log.debug("Recorded file change", path=path, created=was_created)
        return recorded

    def record_shell_command(self, command: str, checkpoint: Checkpoint | None = None) -> bool:
        target = checkpoint or self.current
        if target is None:
            log.debug("No current checkpoint, shell command not recorded")
            return False
        target.record_shell_command(command)
        return True

    def finalize_current(self) -> Checkpoint | None:
        """Move the current checkpoint into the ledger unless it recorded nothing."""
        checkpoint, self.current = self.current, None
        if checkpoint is None:
            return None
        if not checkpoint.has_changes:
            log.debug("Discarding empty checkpoint", message_index=checkpoint.message_index)
            return None
        self._checkpoints.append(checkpoint)
        log.info(
            "Checkpoint finalized",
            files=checkpoint.modified_file_count,
            commands=len(checkpoint.shell_commands_run),
        )
        return checkpoint

    def checkpoint_for_message(self, index: int) -> Checkpoint | None:
        for checkpoint in self._checkpoints:
            if checkpoint.message_index == index:
                return checkpoint
        if self.current is not None and self.current.message_index == index:
            return self.current
        return None

    def changes_since(self, checkpoint: Checkpoint) -> tuple[dict[str, FileSnapshot], list[str]]:
        """Merge ``checkpoint`` with every later one; the earliest snapshot per path wins."""
        files = dict(checkpoint.file_snapshots)
        commands = list(checkpoint.shell_commands_run)
        later = [cp for cp in self._checkpoints if cp.message_index > checkpoint.message_index]
        if self.current is not None and self.current.message_index > checkpoint.message_index:
            later.append(self.current)
        for cp in later:
            for path, snapshot in cp.file_snapshots.items():
                files.setdefault(path, snapshot)
            commands.extend(cp.shell_commands_run)
        return files, commands

    def rollback_preview(self, checkpoint: Checkpoint, message_count: int = 0) -> RollbackPreview:
        files, commands = self.changes_since(checkpoint)
        return RollbackPreview(
            files=files,
            shell_commands=commands,
            messages_to_remove=max(0, message_count - (checkpoint.message_index + 1)),
        )

    def rollback(
        self,
        checkpoint: Checkpoint,
        message_count: int | None = None,
        remove_user_message: bool = False,
    ) -> RollbackResult:
        """Restore every file touched since ``checkpoint`` to its snapshot.

        Files the agent created are deleted; others get ``content_before``
        written back. Shell commands cannot be undone and are only reported.
        Message truncation is left to the caller, using ``messages_removed``.
        """
        files, commands = self.changes_since(checkpoint)
        restored: list[str] = []
        failed: list[tuple[str, str]] = []

        for path in sorted(files):
            snapshot = files[path]
            try:
                _restore(snapshot)
            except (OSError, CheckpointError) as e:
                log.warning("Failed to restore file", path=path, error=str(e))
                failed.append((path, str(e)))
                continue
            restored.append(path)

        messages_removed = 0
        if message_count is not None:
            keep = checkpoint.message_index if remove_user_message else checkpoint.message_index + 1
            messages_removed = max(0, message_count - keep)

        # The rolled-back turn and everything after it no longer exist.
        self._checkpoints = [cp for cp in self._checkpoints if cp.message_index < checkpoint.message_index]
        self.current = None

        result = RollbackResult(
            success=not failed,
            restored_files=restored,
            failed_files=failed,
            messages_removed=messages_removed,
            shell_commands_warning=commands,
        )
        log.info("Rollback completed", summary=result.summary)
        return result

    def clear(self) -> None:
        self._checkpoints.clear()
        self.current = None

    def save(self, path: Path | str) -> None:
        """Write finalized checkpoints to a JSON file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(_CHECKPOINT_LIST.dump_json(self._checkpoints, indent=2))

    @classmethod
    def load(cls, path: Path | str) -> "CheckpointLedger":
        ledger = cls()
        source = Path(path)
        if source.exists():
            ledger._checkpoints = _CHECKPOINT_LIST.validate_json(source.read_bytes())
        return ledger


def _restore(snapshot: FileSnapshot) -> None:
    target = Path(snapshot.path)
    if snapshot.was_created:
        target.unlink(missing_ok=True)
        return
    if snapshot.content_before is None:
        raise CheckpointError(f"No saved content for {snapshot.path}")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(snapshot.content_before, encoding="utf-8")
