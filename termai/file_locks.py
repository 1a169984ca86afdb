"""Per-path async locks shared by agents editing the same tree."""

import asyncio
import os

from termai.logging import get_logger

log = get_logger(__name__)


class FileLockTable:
    """One ``asyncio.Lock`` per normalized absolute path."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._owners: dict[str, str] = {}

    @staticmethod
    def _key(path: str) -> str:
        return os.path.normpath(os.path.abspath(os.path.expanduser(path)))

    def _lock_for(self, path: str) -> asyncio.Lock:
        key = self._key(path)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def is_locked(self, path: str) -> bool:
        lock = self._locks.get(self._key(path))
        return lock is not None and lock.locked()

    def owner(self, path: str) -> str | None:
        return self._owners.get(self._key(path))

    async def acquire(
        self,
        path: str,
        owner: str = "",
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """Wait for the lock on ``path``.

        Returns False on timeout or when ``cancel_event`` fires first.
        """
        lock = self._lock_for(path)
        acquire_task = asyncio.ensure_future(lock.acquire())
        waiters = {acquire_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            acquire_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if acquire_task in done:
            self._owners[self._key(path)] = owner
            return True

        acquire_task.cancel()
        try:
            await acquire_task
        except asyncio.CancelledError:
            pass
        else:
            # Acquired in the same tick it was cancelled.
            lock.release()
        log.debug("File lock not acquired", path=path, owner=owner)
        return False

    def release(self, path: str) -> None:
        key = self._key(path)
        lock = self._locks.get(key)
        if lock is not None and lock.locked():
            self._owners.pop(key, None)
            lock.release()

    def clear(self) -> None:
        self._locks.clear()
        self._owners.clear()
