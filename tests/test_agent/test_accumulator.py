import asyncio
import json
import threading

import pytest

from termai.llm import (
    Done,
    ParsedToolCall,
    StopReason,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallComplete,
    ToolCallStart,
    Usage,
)
from termai.llm.accumulator import ToolCallAccumulator, collect_stream, parse_arguments
from termai.recovery import AgentAPIError, ErrorKind


async def _events(*items):
    for item in items:
        yield item


def test_interleaved_fragments_stay_separate():
    acc = ToolCallAccumulator()
    acc.begin("a", "read_file")
    acc.begin("b", "list_dir")

    acc.append_argument_fragment("a", '{"x":')
    acc.append_argument_fragment("b", '{"y":')
    acc.append_argument_fragment("a", "1}")
    acc.append_argument_fragment("b", "2}")

    assert acc.complete("a").arguments == {"x": 1}
    assert acc.complete("b").arguments == {"y": 2}


@pytest.mark.parametrize("chunks", [["{\"path\": \"/tmp/a b\"}"], list("{\"path\": \"/tmp/a b\"}"), ["{\"pa", "th\": \"/tmp", "/a b\"}"]])
def test_fragments_concatenate_in_arrival_order(chunks):
    acc = ToolCallAccumulator()
    acc.begin("c1", "read_file")
    for chunk in chunks:
        acc.append_argument_fragment("c1", chunk)

    assert acc.raw_arguments("c1") == "".join(chunks)
    assert acc.complete("c1").arguments == {"path": "/tmp/a b"}


def test_unknown_ids_and_bad_json():
    acc = ToolCallAccumulator()
    acc.append_argument_fragment("ghost", "{}")
    acc.begin("bad", "shell")
    acc.append_argument_fragment("bad", "{not json")

    assert acc.complete("ghost") is None
    assert acc.complete("bad").arguments == {}
    assert parse_arguments("[1, 2]") == {}
    assert parse_arguments("") == {}


def test_pending_completed_and_reset():
    acc = ToolCallAccumulator()
    acc.begin("1", "a")
    acc.begin("2", "b")
    acc.complete("2")

    assert acc.has_pending is True
    assert [call.id for call in acc.completed_calls()] == ["2"]
    assert [call.id for call in acc.all_calls()] == ["1", "2"]

    acc.reset()
    assert acc.all_calls() == []
    assert acc.has_pending is False


@pytest.mark.asyncio
async def test_collect_stream_assembles_text_calls_and_usage():
    result = await collect_stream(
        _events(
            TextDelta("Let me "),
            TextDelta("look."),
            ToolCallStart("a", "read_file"),
            ToolCallArgumentDelta("a", '{"path": '),
            ToolCallArgumentDelta("a", '"x.py"}'),
            ToolCallComplete("a"),
            ToolCallComplete("b", ParsedToolCall("b", "list_dir", {"path": "."})),
            Usage(10, 5),
            StopReason("tool_use"),
            Done(),
        )
    )

    assert result.content == "Let me look."
    assert [(c.id, c.name, c.arguments) for c in result.tool_calls] == [
        ("a", "read_file", {"path": "x.py"}),
        ("b", "list_dir", {"path": "."}),
    ]
    assert result.total_tokens == 15
    assert result.stop_reason == "tool_use"
    assert result.has_tool_calls is True


@pytest.mark.asyncio
async def test_collect_stream_completes_open_calls_at_done():
    result = await collect_stream(
        _events(ToolCallStart("a", "shell"), ToolCallArgumentDelta("a", '{"command": "ls"}'), Done())
    )

    assert result.content is None
    assert result.tool_calls[0].arguments == {"command": "ls"}


@pytest.mark.asyncio
async def test_collect_stream_stops_at_done():
    result = await collect_stream(_events(TextDelta("a"), Done(), TextDelta("ignored")))

    assert result.content == "a"


@pytest.mark.asyncio
async def test_collect_stream_cancels_promptly():
    cancel = asyncio.Event()

    async def slow():
        yield TextDelta("partial")
        await asyncio.sleep(10)
        yield Done()

    asyncio.get_running_loop().call_later(0.1, cancel.set)

    with pytest.raises(AgentAPIError) as excinfo:
        await asyncio.wait_for(collect_stream(slow(), cancel_event=cancel), timeout=2)

    assert excinfo.value.kind is ErrorKind.CANCELLED


def test_concurrent_producers_keep_each_call_intact():
    acc = ToolCallAccumulator()
    expected = {f"call_{i}": {"index": i, "text": f"chunk-{i}-" * 50} for i in range(8)}
    for call_id in expected:
        acc.begin(call_id, "write_file")

    start = threading.Barrier(len(expected) + 1)
    seen_pending: list[bool] = []
    seen_tracked: list[bool] = []

    def produce(call_id: str) -> None:
        payload = json.dumps(expected[call_id])
        start.wait()
        for i in range(0, len(payload), 3):
            acc.append_argument_fragment(call_id, payload[i : i + 3])

    def consume() -> None:
        start.wait()
        for _ in range(200):
            seen_pending.append(acc.has_pending)
            seen_tracked.append(all(acc.raw_arguments(call_id) is not None for call_id in expected))

    threads = [threading.Thread(target=produce, args=(call_id,)) for call_id in expected]
    threads.append(threading.Thread(target=consume))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert all(seen_pending) and len(seen_pending) == 200
    assert all(seen_tracked)
    for call_id, arguments in expected.items():
        assert acc.raw_arguments(call_id) == json.dumps(arguments)
        assert acc.complete(call_id).arguments == arguments
    assert acc.has_pending is False
