"""FFmpeg process supervision.

Owns the external transcoder processes. Each session gets one
``SupervisedProcess`` which reports exactly one terminal event to its owner:

    error(message)  - spawn failed, or FFmpeg exited non-zero on its own
    end()           - FFmpeg exited cleanly, or exited after we asked it to

Termination is fire-and-forget: SIGTERM now, SIGKILL from a background
reaper if the process is still alive after the grace period. Terminating an
already-exited or already-terminated process is a no-op.

Spawning goes through an injectable ``spawner`` coroutine so the lifecycle
logic can run against fake processes in tests.

Logging Strategy:
    DEBUG - FFmpeg stderr chatter, PIDs, reaper activity
    INFO  - Process start and exit
    WARN  - FFmpeg warnings, SIGKILL escalation
    ERROR - Spawn failures, FFmpeg errors, non-zero exits
"""
from __future__ import annotations

import asyncio
import logging
import subprocess
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Final, Protocol, Sequence

from ..utils.strings import mask_credentials, redact_credentials
from .. import metrics

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

STDERR_TAIL_LINES: Final[int] = 20
"""Recent stderr lines kept per process for error reports."""

DEFAULT_STOP_TIMEOUT: Final[float] = 5.0
"""Grace period between SIGTERM and SIGKILL."""


# ============================================================================
# Process Abstraction
# ============================================================================

class ProcessHandle(Protocol):
    """The subset of asyncio.subprocess.Process the supervisor relies on."""

    pid: int
    returncode: int | None
    stderr: asyncio.StreamReader | None

    def terminate(self) -> None: ...
    def kill(self) -> None: ...
    async def wait(self) -> int: ...


Spawner = Callable[[Sequence[str]], Awaitable[ProcessHandle]]
ErrorCallback = Callable[[str], Any]
EndCallback = Callable[[], Any]


async def spawn_subprocess(command: Sequence[str]) -> ProcessHandle:
    """Default spawner: real subprocess, stdout discarded, stderr piped."""
    return await asyncio.create_subprocess_exec(
        *command,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE
    )


def describe_command(command: Sequence[str]) -> str:
    """Command line for logs with credentials masked."""
    return " ".join(mask_credentials(arg) for arg in command)


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a one-shot process run."""

    returncode: int | None
    stderr_tail: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


# ============================================================================
# Supervised Process
# ============================================================================

class SupervisedProcess:
    """One FFmpeg process plus its watcher, owned by one session."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        name: str,
        command: Sequence[str],
        on_error: ErrorCallback,
        on_end: EndCallback
    ) -> None:
        self._supervisor = supervisor
        self.name = name
        self.command = list(command)
        self._on_error = on_error
        self._on_end = on_end
        self.process: ProcessHandle | None = None
        self.stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self.terminate_requested = False
        self._event_emitted = False

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def terminate(self) -> None:
        """Request graceful termination. Idempotent, never raises."""
        if self.terminate_requested:
            return
        self.terminate_requested = True

        if not self.running:
            logger.debug(f"[{self.name}] Terminate skipped: not running")
            return

        try:
            self.process.terminate()
            logger.debug(f"[{self.name}] SIGTERM sent (PID={self.pid})")
        except ProcessLookupError:
            logger.debug(f"[{self.name}] Process already gone")
            return

        self._supervisor.spawn_background(self._reap())

    async def _reap(self) -> None:
        """Escalate to SIGKILL if SIGTERM is ignored."""
        process = self.process
        if process is None:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self._supervisor.stop_timeout)
            logger.debug(f"[{self.name}] Terminated gracefully")
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] Timeout after SIGTERM, killing PID={process.pid}")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    # ------------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------------

    def _emit_error(self, message: str) -> None:
        if self._event_emitted:
            return
        self._event_emitted = True
        try:
            self._on_error(message)
        except Exception as e:
            logger.error(f"[{self.name}] error handler failed: {e}", exc_info=True)

    def _emit_end(self) -> None:
        if self._event_emitted:
            return
        self._event_emitted = True
        try:
            self._on_end()
        except Exception as e:
            logger.error(f"[{self.name}] end handler failed: {e}", exc_info=True)

    async def _watch(self) -> None:
        """Drain stderr, wait for exit, emit the terminal event."""
        process = self.process
        assert process is not None

        metrics.ffmpeg_processes_active.inc()
        try:
            if process.stderr is not None:
                await self._drain_stderr(process.stderr)
            returncode = await process.wait()
        except asyncio.CancelledError:
            logger.debug(f"[{self.name}] Watcher cancelled")
            raise
        finally:
            metrics.ffmpeg_processes_active.dec()

        if self.terminate_requested or returncode == 0:
            logger.info(f"[{self.name}] FFmpeg ended (code {returncode})")
            self._emit_end()
            return

        last_line = self.stderr_tail[-1] if self.stderr_tail else "no output"
        logger.error(f"[{self.name}] FFmpeg exited with code {returncode}: {last_line}")
        self._emit_error(f"FFmpeg exited with code {returncode}: {last_line}")

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return

            message = redact_credentials(line.decode(errors="replace").strip())
            if not message:
                continue
            self.stderr_tail.append(message)

            # Log by severity
            msg_lower = message.lower()
            if 'error' in msg_lower or 'fatal' in msg_lower:
                logger.error(f"FFmpeg [{self.name}]: {message}")
            elif 'warning' in msg_lower:
                logger.warning(f"FFmpeg [{self.name}]: {message}")
            else:
                logger.debug(f"FFmpeg [{self.name}]: {message}")


# ============================================================================
# Supervisor
# ============================================================================

class ProcessSupervisor:
    """Spawns, watches and terminates FFmpeg processes.

    Args:
        spawner: Coroutine creating a process from an argv (default: real subprocess)
        stop_timeout: Seconds between SIGTERM and SIGKILL
    """

    def __init__(
        self,
        spawner: Spawner | None = None,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT
    ) -> None:
        self._spawner: Spawner = spawner or spawn_subprocess
        self.stop_timeout = stop_timeout
        self._processes: set[SupervisedProcess] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def active_count(self) -> int:
        return sum(1 for proc in self._processes if proc.running)

    def spawn_background(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def start(
        self,
        name: str,
        command: Sequence[str],
        on_error: ErrorCallback,
        on_end: EndCallback
    ) -> SupervisedProcess:
        """Spawn a long-running process and watch it.

        Never raises for spawn failures: they are delivered through
        ``on_error`` on the next loop iteration.
        """
        handle = SupervisedProcess(self, name, command, on_error, on_end)
        logger.debug(f"[{name}] Spawning: {describe_command(command)}")

        try:
            handle.process = await self._spawner(command)
        except OSError as e:
            logger.error(f"[{name}] Failed to spawn FFmpeg: {e}")
            asyncio.get_running_loop().call_soon(handle._emit_error, f"Failed to spawn FFmpeg: {e}")
            return handle

        logger.info(f"[{name}] FFmpeg started (PID={handle.pid})")
        self._processes.add(handle)
        watcher = self.spawn_background(handle._watch())
        watcher.add_done_callback(lambda _task: self._processes.discard(handle))
        return handle

    def terminate(self, handle: SupervisedProcess | None) -> None:
        """Terminate a supervised process; None or finished handles are a no-op."""
        if handle is not None:
            handle.terminate()

    async def run(self, name: str, command: Sequence[str], timeout: float) -> ProcessResult:
        """Run a short-lived process to completion (killed on timeout)."""
        logger.debug(f"[{name}] Running: {describe_command(command)}")

        try:
            process = await self._spawner(command)
        except OSError as e:
            logger.error(f"[{name}] Failed to spawn FFmpeg: {e}")
            return ProcessResult(returncode=None, stderr_tail=str(e))

        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        async def _communicate() -> int:
            if process.stderr is not None:
                while True:
                    line = await process.stderr.readline()
                    if not line:
                        break
                    text = line.decode(errors="replace").strip()
                    if text:
                        tail.append(redact_credentials(text))
            return await process.wait()

        try:
            returncode = await asyncio.wait_for(_communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{name}] Timed out after {timeout}s, killing")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            return ProcessResult(returncode=process.returncode, stderr_tail="\n".join(tail), timed_out=True)
        except asyncio.CancelledError:
            logger.warning(f"[{name}] Cancelled while running, killing")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            self.spawn_background(process.wait())
            raise

        return ProcessResult(returncode=returncode, stderr_tail="\n".join(tail))

    async def aclose(self, timeout: float | None = None) -> None:
        """Terminate everything still running and wait for reapers to finish."""
        for handle in list(self._processes):
            handle.terminate()

        pending = [task for task in self._background_tasks if not task.done()]
        if not pending:
            return

        wait_for = timeout if timeout is not None else self.stop_timeout + 1.0
        done, still_pending = await asyncio.wait(pending, timeout=wait_for)
        if still_pending:
            logger.warning(f"{len(still_pending)} supervisor task(s) still pending at shutdown")
            for task in still_pending:
                task.cancel()
