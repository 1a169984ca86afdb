from pathlib import Path

import pytest

from termai.tools.delete import DeleteFileTool
from termai.tools.edit import DeleteLinesTool, EditFileTool, InsertLinesTool
from termai.tools.registry import FileOperationType


@pytest.mark.asyncio
async def test_edit_file_replaces_first_occurrence(tmp_path: Path):
    target = tmp_path / "app.py"
    target.write_text("x = 1\nx = 1\n", encoding="utf-8")

    result = await EditFileTool().execute(path=str(target), old_text="x = 1", new_text="x = 2")

    assert result.success is True
    assert target.read_text(encoding="utf-8") == "x = 2\nx = 1\n"
    assert result.output.startswith(f"Replaced 1 occurrence in {target}.")
    assert result.file_change.operation_type is FileOperationType.EDIT
    assert result.file_change.before_content == "x = 1\nx = 1\n"


@pytest.mark.asyncio
async def test_edit_file_replace_all(tmp_path: Path):
    target = tmp_path / "app.py"
    target.write_text("a a a", encoding="utf-8")

    result = await EditFileTool().execute(path=str(target), old_text="a", new_text="b", replace_all="true")

    assert result.success is True
    assert target.read_text(encoding="utf-8") == "b b b"
    assert "Replaced 3 occurrence(s)" in result.output


@pytest.mark.asyncio
async def test_edit_file_reports_missing_text(tmp_path: Path):
    target = tmp_path / "app.py"
    target.write_text("hello\n", encoding="utf-8")

    result = await EditFileTool().execute(path=str(target), old_text="absent", new_text="x")

    assert result.success is False
    assert result.error.startswith("Text not found in file.")
    assert "hello" in result.error


@pytest.mark.asyncio
async def test_insert_lines_inserts_before_line(tmp_path: Path):
    target = tmp_path / "list.txt"
    target.write_text("a\nb\nc", encoding="utf-8")

    result = await InsertLinesTool().execute(path=str(target), line_number="2", content="x")

    assert result.success is True
    assert target.read_text(encoding="utf-8") == "a\nx\nb\nc"
    assert result.output.startswith("Inserted 1 line(s) at line 2.")


@pytest.mark.asyncio
async def test_insert_lines_skips_existing_content(tmp_path: Path):
    target = tmp_path / "list.txt"
    target.write_text("a\nb\n", encoding="utf-8")

    result = await InsertLinesTool().execute(path=str(target), line_number="1", content="b")

    assert result.success is True
    assert result.output.startswith("ALREADY EXISTS")
    assert target.read_text(encoding="utf-8") == "a\nb\n"


@pytest.mark.asyncio
async def test_delete_lines_removes_inclusive_range(tmp_path: Path):
    target = tmp_path / "list.txt"
    target.write_text("1\n2\n3\n4", encoding="utf-8")

    result = await DeleteLinesTool().execute(path=str(target), start_line="2", end_line="3")

    assert result.success is True
    assert target.read_text(encoding="utf-8") == "1\n4"
    assert result.output == f"Deleted 2 line(s) from {target}"


@pytest.mark.asyncio
async def test_delete_lines_validates_range(tmp_path: Path):
    target = tmp_path / "list.txt"
    target.write_text("1\n2", encoding="utf-8")

    result = await DeleteLinesTool().execute(path=str(target), start_line="3", end_line="1")

    assert result.success is False
    assert "end_line" in result.error


@pytest.mark.asyncio
async def test_delete_file_requires_approval_and_keeps_preview(tmp_path: Path):
    target = tmp_path / "gone.txt"
    target.write_text("bye", encoding="utf-8")
    tool = DeleteFileTool()

    result = await tool.execute(path=str(target))

    assert tool.always_requires_approval is True
    assert result.success is True
    assert not target.exists()
    assert result.output == f"Deleted file: {target}"
    assert result.file_change.operation_type is FileOperationType.DELETE_FILE
    assert result.file_change.before_content == "bye"
