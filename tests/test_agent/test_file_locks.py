import asyncio

import pytest

from termai.file_locks import FileLockTable


@pytest.mark.asyncio
async def test_acquire_and_release(tmp_path):
    locks = FileLockTable()
    path = str(tmp_path / "a.py")

    assert await locks.acquire(path, owner="agent-1") is True
    assert locks.is_locked(path)
    assert locks.owner(str(tmp_path / "." / "a.py")) == "agent-1"

    locks.release(path)
    assert not locks.is_locked(path)
    assert locks.owner(path) is None


@pytest.mark.asyncio
async def test_timeout_returns_false(tmp_path):
    locks = FileLockTable()
    path = str(tmp_path / "a.py")
    await locks.acquire(path, owner="first")

    assert await locks.acquire(path, owner="second", timeout=0.05) is False
    assert locks.owner(path) == "first"


@pytest.mark.asyncio
async def test_waiter_gets_lock_after_release(tmp_path):
    locks = FileLockTable()
    path = str(tmp_path / "a.py")
    await locks.acquire(path, owner="first")

    waiter = asyncio.create_task(locks.acquire(path, owner="second", timeout=2))
    await asyncio.sleep(0.05)
    locks.release(path)

    assert await waiter is True
    assert locks.owner(path) == "second"


@pytest.mark.asyncio
async def test_cancel_event_stops_waiting(tmp_path):
    locks = FileLockTable()
    path = str(tmp_path / "a.py")
    await locks.acquire(path)
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    assert await locks.acquire(path, timeout=5, cancel_event=cancel) is False
    locks.release(path)
    assert not locks.is_locked(path)
