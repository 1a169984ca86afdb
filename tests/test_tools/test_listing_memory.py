from pathlib import Path

import pytest

from termai.tools.listing import ListDirectoryTool, SearchFilesTool
from termai.tools.memory import MemoryTool
from termai.tools.registry import MemoryStore, OutputBuffer
from termai.tools.search_output import SearchOutputTool


@pytest.mark.asyncio
async def test_list_dir_marks_directories_and_skips_hidden(tmp_path: Path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("", encoding="utf-8")
    (tmp_path / "README.md").write_text("", encoding="utf-8")
    (tmp_path / ".env").write_text("", encoding="utf-8")

    flat = await ListDirectoryTool().execute(path=str(tmp_path))
    deep = await ListDirectoryTool().execute(path=str(tmp_path), recursive="true")

    assert flat.output.splitlines() == ["README.md", "src/"]
    assert "src/main.py" in deep.output.splitlines()


@pytest.mark.asyncio
async def test_list_dir_empty_directory(tmp_path: Path):
    result = await ListDirectoryTool().execute(path=str(tmp_path))

    assert result.output == "(empty directory)"


@pytest.mark.asyncio
async def test_search_files_matches_basename_recursively(tmp_path: Path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "test_a.py").write_text("", encoding="utf-8")
    (tmp_path / "b.py").write_text("", encoding="utf-8")

    found = await SearchFilesTool().execute(path=str(tmp_path), pattern="test_*.py")
    missing = await SearchFilesTool().execute(path=str(tmp_path), pattern="*.rs")

    assert found.output == "Found 1 files:\npkg/test_a.py"
    assert missing.output == f"No files matching '*.rs' found in {tmp_path}"


@pytest.mark.asyncio
async def test_memory_tool_save_recall_list():
    tool = MemoryTool(MemoryStore())

    saved = await tool.execute(action="save", key="port", value="8080")
    recalled = await tool.execute(action="recall", key="port")
    unknown = await tool.execute(action="recall", key="nope")
    listed = await tool.execute(action="list")
    bad = await tool.execute(action="forget")

    assert saved.output == "Saved 'port'"
    assert recalled.output == "8080"
    assert unknown.output == "No value stored for 'nope'"
    assert listed.output == "Stored keys: port"
    assert bad.success is False


def test_output_buffer_evicts_oldest_entries():
    buffer = OutputBuffer(max_entries=2, max_total_size=1000)
    buffer.store("first", "cmd1")
    buffer.store("second", "cmd2")
    buffer.store("third", "cmd3")

    assert len(buffer) == 2
    assert buffer.get_full_output("cmd1") is None
    assert buffer.get_full_output("cmd3") == "third"


def test_output_buffer_evicts_by_total_size():
    buffer = OutputBuffer(max_entries=10, max_total_size=10)
    buffer.store("aaaaaa", "one")
    buffer.store("bbbbbb", "two")

    assert len(buffer) == 1
    assert buffer.get_full_output("two") == "bbbbbb"


@pytest.mark.asyncio
async def test_search_output_reports_context():
    buffer = OutputBuffer(max_entries=10, max_total_size=10000)
    buffer.store("compiling\nerror: missing semicolon\ndone", "make")
    tool = SearchOutputTool(buffer)

    result = await tool.execute(pattern="ERROR", context_lines="1")
    none = await tool.execute(pattern="warning")

    assert result.output.startswith("Found 1 matches for 'ERROR':")
    assert "(from 'make', line 2)" in result.output
    assert "compiling\nerror: missing semicolon\ndone" in result.output
    assert none.output == "No matches found for 'warning'"
