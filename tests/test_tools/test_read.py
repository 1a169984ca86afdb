from pathlib import Path

import pytest

from termai.tools.read import ReadFileTool, head_tail


@pytest.mark.asyncio
async def test_read_file_line_range_returns_numbered_lines(tmp_path: Path):
    target = tmp_path / "sample.txt"
    target.write_text("line1\nline2\nline3\n", encoding="utf-8")

    tool = ReadFileTool()
    result = await tool.execute(path=str(target), start_line="2", end_line="3")

    assert result.success is True
    assert result.output == "2| line2\n3| line3"


@pytest.mark.asyncio
async def test_read_file_resolves_relative_paths_against_cwd(tmp_path: Path):
    (tmp_path / "notes.md").write_text("hello", encoding="utf-8")

    result = await ReadFileTool().execute(path="notes.md", _cwd=str(tmp_path))

    assert result.success is True
    assert result.output == "hello"


@pytest.mark.asyncio
async def test_read_file_start_line_past_end_fails(tmp_path: Path):
    target = tmp_path / "short.txt"
    target.write_text("a\nb", encoding="utf-8")

    result = await ReadFileTool().execute(path=str(target), start_line="9")

    assert result.success is False
    assert result.error == "Start line 9 exceeds file length (2 lines)"


@pytest.mark.asyncio
async def test_read_file_missing_file_names_resolved_path(tmp_path: Path):
    result = await ReadFileTool().execute(path="missing.txt", _cwd=str(tmp_path))

    assert result.success is False
    assert "File not found: 'missing.txt'" in result.error
    assert str(tmp_path / "missing.txt") in result.error


@pytest.mark.asyncio
async def test_read_file_truncates_large_content(tmp_path: Path):
    target = tmp_path / "big.txt"
    target.write_text("x" * 500 + "\n" + "y" * 500, encoding="utf-8")

    result = await ReadFileTool(max_chars=100).execute(path=str(target))

    assert result.success is True
    assert result.output.startswith("File has 2 lines, 1001 chars.")
    assert "chars omitted" in result.output


def test_head_tail_keeps_both_ends():
    text = "a" * 60 + "b" * 60

    clipped = head_tail(text, 100)

    assert clipped.startswith("a" * 60)
    assert clipped.endswith("b" * 40)
    assert "[20 chars omitted]" in clipped
    assert head_tail("short", 100) == "short"
