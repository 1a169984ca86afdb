from termai.tools.registry import FileChange, FileOperationType, ToolResult


def test_tool_result_populates_error_from_output_on_failure() -> None:
    result = ToolResult(success=False, output="command failed with exit code 1")

    assert result.error == "command failed with exit code 1"


def test_tool_result_keeps_explicit_error_on_failure() -> None:
    result = ToolResult(success=False, output="stderr output", error="explicit error")

    assert result.error == "explicit error"


def test_tool_result_failure_without_any_text_gets_fallback_error() -> None:
    result = ToolResult(success=False)

    assert result.error == "Tool execution failed"


def test_tool_result_constructors() -> None:
    change = FileChange(file_path="/tmp/x", operation_type=FileOperationType.CREATE, after_content="hi")

    ok = ToolResult.ok("done", file_change=change)
    failed = ToolResult.fail("nope", skip_result_message=True)

    assert ok.success is True
    assert ok.file_change.is_new_file is True
    assert ok.to_message() == "done"
    assert failed.success is False
    assert failed.skip_result_message is True
    assert failed.to_message() == "Error: nope"
