"""Background process manager.

Tracks OS processes the agent starts (dev servers, watchers) so their output
can be inspected later. Output is drained by daemon reader threads into
bounded per-process buffers, each behind its own lock; the live-process table
has a separate lock. No lock is held across process I/O.
"""

import asyncio
import codecs
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Callable

from termai.config import ProcessConfig, get_config
from termai.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class StartResult:
    pid: int
    initial_output: str
    error: str | None = None


@dataclass(frozen=True)
class CheckResult:
    running: bool
    output: str
    error: str


@dataclass(frozen=True)
class PortCheckResult:
    in_use: bool
    pid: int | None
    output: str


@dataclass(frozen=True)
class ProcessListing:
    pid: int
    command: str
    running: bool
    uptime: float


@dataclass(frozen=True)
class BackgroundProcessInfo:
    """Observer view of a managed process."""

    pid: int
    command: str
    start_time: datetime
    is_running: bool
    recent_output: str

    @property
    def uptime_string(self) -> str:
        interval = (datetime.now() - self.start_time).total_seconds()
        if interval < 60:
            return f"{int(interval)}s"
        if interval < 3600:
            return f"{int(interval / 60)}m"
        return f"{int(interval / 3600)}h {int((interval % 3600) / 60)}m"

    @property
    def short_command(self) -> str:
        trimmed = self.command.strip()
        if len(trimmed) > 40:
            return trimmed[:37] + "..."
        return trimmed


class _BoundedBuffer:
    """Append-only text buffer that keeps only the newest characters once over cap."""

    def __init__(self, cap: int, keep: int):
        self._cap = cap
        self._keep = keep
        self._text = ""
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        with self._lock:
            self._text += text
            if len(self._text) > self._cap:
                self._text = self._text[-self._keep :]

    def get(self) -> str:
        with self._lock:
            return self._text


class ManagedProcess:
    """A spawned background process and its captured output."""

    def __init__(self, popen: subprocess.Popen, command: str, config: ProcessConfig):
        self.popen = popen
        self.pid = popen.pid
        self.command = command
        self.start_time = datetime.now()
        self.started_at = time.monotonic()
        self._stdout = _BoundedBuffer(config.stdout_cap, config.stdout_keep)
        self._stderr = _BoundedBuffer(config.stderr_cap, config.stderr_keep)
        self._detached = threading.Event()
        self._readers: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return self.popen.poll() is None

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def append_output(self, text: str) -> None:
        if not self._detached.is_set():
            self._stdout.append(text)

    def append_error(self, text: str) -> None:
        if not self._detached.is_set():
            self._stderr.append(text)

    def get_output(self) -> str:
        return self._stdout.get()

    def get_error(self) -> str:
        return self._stderr.get()

    def start_readers(self) -> None:
        """Drain stdout/stderr on daemon threads."""
        for stream, sink, label in (
            (self.popen.stdout, self.append_output, "stdout"),
            (self.popen.stderr, self.append_error, "stderr"),
        ):
            if stream is None:
                continue
            thread = threading.Thread(
                target=self._drain,
                args=(stream, sink),
                name=f"termai-proc-{self.pid}-{label}",
                daemon=True,
            )
            self._readers.append(thread)
            thread.start()

    def _drain(self, stream: IO[bytes], sink: Callable[[str], None]) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        fd = stream.fileno()
        try:
            while not self._detached.is_set():
                chunk = os.read(fd, 4096)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    sink(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                sink(tail)
        except (OSError, ValueError):
            pass
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def join_readers(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        for thread in self._readers:
            thread.join(max(0.0, deadline - time.monotonic()))

    def detach(self) -> None:
        """Stop accepting output. Buffers stay readable."""
        self._detached.set()

    def terminate(self) -> None:
        if not self.is_running:
            return
        try:
            os.killpg(os.getpgid(self.pid), signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            try:
                self.popen.terminate()
            except ProcessLookupError:
                pass

    def info(self) -> BackgroundProcessInfo:
        return BackgroundProcessInfo(
            pid=self.pid,
            command=self.command,
            start_time=self.start_time,
            is_running=self.is_running,
            recent_output=self.get_output()[-500:],
        )


ProcessListener = Callable[[list[BackgroundProcessInfo]], None]


class ProcessManager:
    """Starts, inspects and stops background processes."""

    def __init__(self, config: ProcessConfig | None = None):
        self.config = config or get_config().processes
        self._processes: dict[int, ManagedProcess] = {}
        self._lock = threading.Lock()
        # pid -> (last observer view, monotonic time it was seen dead)
        self._dead: dict[int, tuple[BackgroundProcessInfo, float]] = {}
        self._refresh_task: asyncio.Task[None] | None = None
        self._listeners: list[ProcessListener] = []
        self.running_processes: list[BackgroundProcessInfo] = []

    @property
    def running_count(self) -> int:
        return len(self.running_processes)

    @property
    def refresh_active(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def add_listener(self, listener: ProcessListener) -> None:
        """Subscribe to ``running_processes`` updates."""
        self._listeners.append(listener)

    def get(self, pid: int) -> ManagedProcess | None:
        with self._lock:
            return self._processes.get(pid)

    async def start(
        self,
        command: str,
        cwd: str | None = None,
        wait_for: str | None = None,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> StartResult:
        """Spawn ``command`` in the background and collect its initial output.

        Args:
            command: Shell command line
            cwd: Working directory
            wait_for: Text (case-insensitive) that signals startup
            timeout: Seconds to wait for ``wait_for``
            cancel_event: Unblocks the wait when set

        Returns:
            StartResult; ``pid`` is -1 when the spawn failed
        """
        timeout = self.config.default_timeout if timeout is None else timeout
        try:
            popen = subprocess.Popen(
                [self.config.shell, "-c", command],
                cwd=cwd or None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            log.error("Failed to start background process", command=command, error=str(e))
            return StartResult(pid=-1, initial_output="", error=f"Failed to start process: {e}")

        managed = ManagedProcess(popen, command, self.config)
        with self._lock:
            self._processes[managed.pid] = managed
        managed.start_readers()
        log.info("Started background process", pid=managed.pid, command=command)

        if wait_for:
            needle = wait_for.lower()
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline:
                if needle in managed.get_output().lower() or needle in managed.get_error().lower():
                    break
                if not managed.is_running:
                    await asyncio.to_thread(managed.join_readers, 0.2)
                    break
                if await sleep_or_cancelled(self.config.poll_interval, cancel_event):
                    break
        else:
            await sleep_or_cancelled(self.config.initial_output_wait, cancel_event)

        output = managed.get_output()
        error = managed.get_error()

        self._ensure_refresh_loop()
        self.refresh()

        combined = output + (f"\nSTDERR: {error}" if error else "")
        return StartResult(pid=managed.pid, initial_output=combined)

    def check(self, pid: int, full_output: bool = False) -> CheckResult:
        managed = self.get(pid)
        if managed is None:
            return CheckResult(False, "", f"Process {pid} not found in manager")
        output = managed.get_output()
        error = managed.get_error()
        if not full_output:
            output = output[-2000:]
            error = error[-500:]
        return CheckResult(managed.is_running, output, error)

    async def check_port(self, port: int) -> PortCheckResult:
        """Find the process listening on ``port`` using ``lsof``."""
        try:
            proc = await asyncio.create_subprocess_exec(
                "lsof",
                "-i",
                f":{port}",
                "-t",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await proc.communicate()
        except OSError as e:
            log.warning("Port check failed", port=port, error=str(e))
            return PortCheckResult(False, None, f"No process found on port {port}")

        lines = stdout.decode("utf-8", errors="replace").strip().splitlines()
        try:
            pid = int(lines[0].strip()) if lines else None
        except ValueError:
            pid = None
        if pid is None:
            return PortCheckResult(False, None, f"No process found on port {port}")

        managed = self.get(pid)
        managed_output = managed.get_output()[-1000:] if managed else ""
        return PortCheckResult(True, pid, managed_output or f"Process {pid} running on port {port}")

    def stop(self, pid: int) -> bool:
        """Terminate a managed process. False when it is not tracked."""
        with self._lock:
            managed = self._processes.pop(pid, None)
        if managed is None:
            return False
        managed.detach()
        managed.terminate()
        log.info("Stopped background process", pid=pid)
        self.refresh()
        return True

    def stop_all(self) -> None:
        with self._lock:
            managed_list = list(self._processes.values())
            self._processes.clear()
        for managed in managed_list:
            managed.detach()
            managed.terminate()
        if managed_list:
            log.info("Stopped all background processes", count=len(managed_list))
        self.refresh()

    def list_processes(self) -> list[ProcessListing]:
        with self._lock:
            managed_list = list(self._processes.values())
        listings = [ProcessListing(m.pid, m.command, m.is_running, m.uptime) for m in managed_list]
        return sorted(listings, key=lambda item: item.pid)

    def refresh(self) -> list[BackgroundProcessInfo]:
        """Reconcile process status into ``running_processes``.

        Exited processes leave the live table immediately and stay visible
        to observers for ``dead_grace_period`` seconds.
        """
        now = time.monotonic()
        with self._lock:
            managed_list = list(self._processes.values())
        infos = [managed.info() for managed in managed_list]

        exited = [info for info in infos if not info.is_running]
        if exited:
            with self._lock:
                for info in exited:
                    managed = self._processes.pop(info.pid, None)
                    if managed is not None:
                        managed.detach()
            for info in exited:
                self._dead.setdefault(info.pid, (info, now))

        for pid, (_, died_at) in list(self._dead.items()):
            if now - died_at >= self.config.dead_grace_period:
                del self._dead[pid]

        live_pids = {info.pid for info in infos if info.is_running}
        visible = [info for info in infos if info.is_running]
        visible.extend(info for pid, (info, _) in self._dead.items() if pid not in live_pids)
        self.running_processes = sorted(visible, key=lambda info: info.start_time, reverse=True)

        for listener in list(self._listeners):
            try:
                listener(list(self.running_processes))
            except Exception as e:
                log.warning("Process listener failed", error=str(e))
        return self.running_processes

    def _has_tracked(self) -> bool:
        with self._lock:
            if self._processes:
                return True
        return bool(self._dead)

    def _ensure_refresh_loop(self) -> None:
        if self.refresh_active:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._refresh_task = loop.create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        try:
            while self._has_tracked():
                await asyncio.sleep(self.config.refresh_interval)
                self.refresh()
        finally:
            self._refresh_task = None

    def shutdown(self) -> None:
        """Stop every process and the refresh loop."""
        self.stop_all()
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
        self._refresh_task = None
        self._dead.clear()
        self.running_processes = []


async def sleep_or_cancelled(delay: float, cancel_event: asyncio.Event | None) -> bool:
    """Sleep for ``delay``; return True early if ``cancel_event`` fires."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


# Global process manager
_manager: ProcessManager | None = None


def get_process_manager() -> ProcessManager:
    """Get the global process manager."""
    global _manager
    if _manager is None:
        _manager = ProcessManager()
    return _manager


def reset_process_manager() -> None:
    """Shut down and forget the global process manager."""
    global _manager
    if _manager is not None:
        _manager.shutdown()
    _manager = None
