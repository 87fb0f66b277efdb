"""Shared fixtures: a scriptable stand-in for FFmpeg and a wired SessionManager.

The fake spawner never runs a real binary. It inspects the argv it is given
and fakes FFmpeg's filesystem side effects (playlist/segment, capture JPEG)
according to ``spawner.mode`` / ``spawner.capture_mode``.
"""
from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from typing import Sequence

import pytest
import pytest_asyncio

from camrelay.config.settings import Settings
from camrelay.metadata_store import MetadataStore
from camrelay.services import container
from camrelay.services.sessions import SessionManager

_pids = itertools.count(4000)


class FakeProcess:
    """Minimal asyncio.subprocess.Process look-alike."""

    def __init__(self, ignore_terminate: bool = False) -> None:
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.stderr = None
        self.ignore_terminate = ignore_terminate
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def finish(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.finish(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Spawner that fakes FFmpeg behavior.

    Session modes:
        ready  - write playlist + first segment immediately, keep running
        never  - keep running without output (startup timeout)
        race   - write playlist + segment, then exit 1 on the next iteration
        error  - exit 1 on the next loop iteration
        end    - exit 0 on the next loop iteration
        oserror - raise FileNotFoundError (binary missing)

    Capture modes: success (write JPEG, exit 0), failure (exit 1, no file)
    """

    def __init__(self) -> None:
        self.mode = "ready"
        self.capture_mode = "success"
        self.ignore_terminate = False
        self.commands: list[list[str]] = []
        self.processes: list[FakeProcess] = []

    @property
    def session_processes(self) -> list[FakeProcess]:
        return [p for p, cmd in zip(self.processes, self.commands) if "-frames:v" not in cmd]

    async def __call__(self, command: Sequence[str]) -> FakeProcess:
        command = list(command)
        if self.mode == "oserror" and "-frames:v" not in command:
            raise FileNotFoundError(2, "No such file or directory", command[0])

        self.commands.append(command)
        proc = FakeProcess(ignore_terminate=self.ignore_terminate)
        self.processes.append(proc)
        loop = asyncio.get_running_loop()

        if "-frames:v" in command:
            if self.capture_mode == "success":
                Path(command[-1]).write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
                proc.finish(0)
            else:
                proc.finish(1)
            return proc

        manifest = Path(command[-1])
        if self.mode in ("ready", "race"):
            (manifest.parent / "stream_000.ts").write_bytes(b"\x47" * 188)
            manifest.write_text("#EXTM3U\n#EXT-X-VERSION:3\nstream_000.ts\n")
        if self.mode == "race":
            loop.call_soon(proc.finish, 1)
        elif self.mode == "error":
            loop.call_soon(proc.finish, 1)
        elif self.mode == "end":
            loop.call_soon(proc.finish, 0)
        return proc


@pytest.fixture
def settings(tmp_path):
    return Settings.for_data_dir(
        tmp_path / "data",
        startup_poll_ms=10,
        startup_timeout_ms=300,
        stop_timeout_secs=0.2,
        capture_timeout_secs=2,
    )


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def store(settings):
    return MetadataStore(settings.sources_file)


@pytest_asyncio.fixture
async def manager(settings, store, spawner):
    session_manager = SessionManager(settings, store, spawner=spawner)
    session_manager.prepare_directories()
    yield session_manager
    await session_manager.shutdown()


@pytest.fixture
def installed_manager(settings, store, spawner):
    """SessionManager pre-installed in the container for TestClient apps.

    The app lifespan adopts it on startup and clears it on shutdown.
    """
    container.session_manager = SessionManager(settings, store, spawner=spawner)
    yield container.session_manager
    container.session_manager = None
