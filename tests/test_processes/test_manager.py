import asyncio
import threading
import time
from datetime import datetime, timedelta

import pytest

from termai.config import ProcessConfig
from termai.processes import BackgroundProcessInfo, ManagedProcess, ProcessManager, _BoundedBuffer


def _manager(**overrides) -> ProcessManager:
    settings = {"refresh_interval": 0.1, "dead_grace_period": 0.3, "initial_output_wait": 0.2}
    settings.update(overrides)
    return ProcessManager(ProcessConfig(**settings))


@pytest.mark.asyncio
async def test_start_returns_as_soon_as_wait_for_text_appears():
    manager = _manager()
    try:
        started = time.monotonic()
        result = await manager.start("sleep 1; echo server ready; sleep 5", wait_for="ready", timeout=5)
        elapsed = time.monotonic() - started

        assert result.error is None
        assert result.pid > 0
        assert "ready" in result.initial_output
        assert elapsed < 1.5
        assert manager.check(result.pid).running is True
    finally:
        manager.shutdown()


@pytest.mark.asyncio
async def test_wait_for_match_is_case_insensitive_and_sees_stderr():
    manager = _manager()
    try:
        result = await manager.start("echo Listening >&2; sleep 5", wait_for="listening", timeout=3)

        assert "STDERR: Listening" in result.initial_output
    finally:
        manager.shutdown()


@pytest.mark.asyncio
async def test_wait_for_stops_early_when_process_exits():
    manager = _manager()
    try:
        started = time.monotonic()
        result = await manager.start("echo boom; exit 1", wait_for="never printed", timeout=5)

        assert time.monotonic() - started < 3
        assert "boom" in result.initial_output
    finally:
        manager.shutdown()


@pytest.mark.asyncio
async def test_cancel_event_unblocks_wait_for():
    manager = _manager()
    cancel = asyncio.Event()
    try:
        asyncio.get_running_loop().call_later(0.3, cancel.set)
        started = time.monotonic()
        result = await manager.start("sleep 10", wait_for="ready", timeout=10, cancel_event=cancel)

        assert time.monotonic() - started < 2
        assert result.pid > 0
    finally:
        manager.shutdown()


@pytest.mark.asyncio
async def test_stop_and_list_processes():
    manager = _manager()
    try:
        first = await manager.start("sleep 10")
        second = await manager.start("sleep 10")

        listed = manager.list_processes()
        assert [item.pid for item in listed] == sorted([first.pid, second.pid])
        assert all(item.running for item in listed)

        assert manager.stop(first.pid) is True
        assert manager.stop(first.pid) is False
        assert [item.pid for item in manager.list_processes()] == [second.pid]
    finally:
        manager.shutdown()
    assert manager.list_processes() == []


@pytest.mark.asyncio
async def test_check_unknown_pid():
    manager = _manager()

    result = manager.check(999999)

    assert result.running is False
    assert result.error == "Process 999999 not found in manager"


@pytest.mark.asyncio
async def test_spawn_failure_reports_error(tmp_path):
    manager = _manager()

    result = await manager.start("echo hi", cwd=str(tmp_path / "missing"))

    assert result.pid == -1
    assert result.error.startswith("Failed to start process:")


@pytest.mark.asyncio
async def test_exited_process_stays_visible_for_grace_period():
    manager = _manager(dead_grace_period=0.5)
    seen: list[list[BackgroundProcessInfo]] = []
    manager.add_listener(seen.append)
    try:
        result = await manager.start("echo done")
        await asyncio.sleep(0.2)
        manager.refresh()

        assert manager.list_processes() == []
        assert [info.pid for info in manager.running_processes] == [result.pid]
        assert manager.running_processes[0].is_running is False

        await asyncio.sleep(0.6)
        manager.refresh()
        assert manager.running_processes == []
        assert seen
    finally:
        manager.shutdown()


def test_bounded_buffer_keeps_most_recent_text():
    buffer = _BoundedBuffer(cap=10, keep=6)

    buffer.append("abcdefgh")
    buffer.append("ijk")

    assert buffer.get() == "fghijk"


def test_bounded_buffer_stays_under_cap_with_concurrent_writers():
    buffer = _BoundedBuffer(cap=100, keep=40)
    start = threading.Barrier(5)
    lengths: list[int] = []

    def write(token: str) -> None:
        start.wait()
        for _ in range(500):
            buffer.append(token * 7)

    def read() -> None:
        start.wait()
        for _ in range(500):
            lengths.append(len(buffer.get()))

    threads = [threading.Thread(target=write, args=(token,)) for token in "abcd"]
    threads.append(threading.Thread(target=read))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    text = buffer.get()
    assert len(lengths) == 500
    assert max(lengths) <= 100
    assert 40 <= len(text) <= 100
    assert set(text) <= set("abcd")


def test_process_info_projection():
    info = BackgroundProcessInfo(
        pid=1,
        command="python -m http.server 8000 --bind 127.0.0.1 --directory /srv/www",
        start_time=datetime.now() - timedelta(seconds=90),
        is_running=True,
        recent_output="",
    )

    assert info.short_command == "python -m http.server 8000 --bind 127..."
    assert info.uptime_string == "1m"


@pytest.mark.asyncio
async def test_stop_all_clears_live_table():
    manager = _manager()
    try:
        first = await manager.start("sleep 30")
        second = await manager.start("sleep 30")

        assert [item.pid for item in manager.list_processes()] == sorted([first.pid, second.pid])

        manager.stop_all()

        assert manager.list_processes() == []
        assert manager.check(first.pid).error == f"Process {first.pid} not found in manager"
    finally:
        manager.shutdown()


class _FakeLsof:
    def __init__(self, stdout: bytes):
        self.stdout = stdout

    async def communicate(self):
        return self.stdout, b""


@pytest.mark.asyncio
async def test_check_port_reports_listening_pid(monkeypatch):
    calls = []

    async def fake_exec(*args, **kwargs):
        calls.append(args)
        return _FakeLsof(b"4242\n4243\n")

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    manager = _manager()

    result = await manager.check_port(8000)

    assert calls == [("lsof", "-i", ":8000", "-t")]
    assert result.in_use is True
    assert result.pid == 4242
    assert result.output == "Process 4242 running on port 8000"


@pytest.mark.asyncio
async def test_check_port_without_lsof(monkeypatch):
    async def missing(*args, **kwargs):
        raise FileNotFoundError("lsof")

    monkeypatch.setattr(asyncio, "create_subprocess_exec", missing)

    result = await _manager().check_port(9)

    assert result.in_use is False
    assert result.pid is None
    assert result.output == "No process found on port 9"


def test_global_manager_reset():
    from termai.processes import get_process_manager, reset_process_manager

    manager = get_process_manager()
    assert get_process_manager() is manager

    reset_process_manager()

    assert get_process_manager() is not manager
    reset_process_manager()


class _FakePopen:
    pid = 4321

    def poll(self):
        return None


def test_detached_process_drops_late_output():
    managed = ManagedProcess(_FakePopen(), "tail -f log", ProcessConfig())
    managed.append_output("before\n")
    managed.append_error("warn\n")

    managed.detach()
    managed.append_output("after\n")
    managed.append_error("late\n")

    assert managed.get_output() == "before\n"
    assert managed.get_error() == "warn\n"


@pytest.mark.asyncio
async def test_stop_detaches_process_output():
    manager = _manager()
    try:
        result = await manager.start("sleep 30")
        managed = manager.get(result.pid)

        assert manager.stop(result.pid) is True
        managed.append_output("written after stop")

        assert "written after stop" not in managed.get_output()
        assert manager.get(result.pid) is None
        assert manager.stop(result.pid) is False
    finally:
        manager.shutdown()


@pytest.mark.asyncio
async def test_refresh_loop_stops_once_nothing_is_tracked():
    manager = _manager()
    try:
        result = await manager.start("echo done")

        assert manager.refresh_active is True

        deadline = time.monotonic() + 5
        while manager.refresh_active and time.monotonic() < deadline:
            await asyncio.sleep(0.05)

        assert manager.refresh_active is False
        assert manager.get(result.pid) is None
        assert manager.running_processes == []
    finally:
        manager.shutdown()
