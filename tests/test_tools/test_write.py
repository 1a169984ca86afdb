from pathlib import Path

import pytest

from termai.tools.registry import FileOperationType
from termai.tools.write import WriteFileTool


@pytest.mark.asyncio
async def test_write_file_creates_parent_directories(tmp_path: Path):
    tool = WriteFileTool()

    result = await tool.execute(path="scripts/example.sh", content="echo hi\n", _cwd=str(tmp_path))

    expected = tmp_path / "scripts" / "example.sh"
    assert result.success is True
    assert expected.read_text(encoding="utf-8") == "echo hi\n"
    assert result.output == f"Wrote 8 chars to {expected}"
    assert result.file_change.operation_type is FileOperationType.CREATE
    assert result.file_change.before_content is None


@pytest.mark.asyncio
async def test_write_file_append_mode(tmp_path: Path):
    target = tmp_path / "log.txt"
    target.write_text("one\n", encoding="utf-8")

    result = await WriteFileTool().execute(path=str(target), content="two\n", mode="append")

    assert result.success is True
    assert target.read_text(encoding="utf-8") == "one\ntwo\n"
    assert result.output.startswith("Appended 4 chars")
    assert result.file_change.operation_type is FileOperationType.INSERT
    assert result.file_change.after_content == "one\ntwo\n"


@pytest.mark.asyncio
async def test_prepare_change_does_not_touch_disk(tmp_path: Path):
    target = tmp_path / "keep.txt"
    target.write_text("old", encoding="utf-8")

    change = await WriteFileTool().prepare_change(path=str(target), content="new")

    assert change.operation_type is FileOperationType.OVERWRITE
    assert change.before_content == "old"
    assert change.after_content == "new"
    assert target.read_text(encoding="utf-8") == "old"


@pytest.mark.asyncio
async def test_write_file_requires_path():
    result = await WriteFileTool().execute(content="x")

    assert result.success is False
    assert result.error == "Missing required argument: path"
