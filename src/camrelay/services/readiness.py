"""Startup resolution: settle-once cell and playlist readiness polling.

A starting session can be resolved by three independent triggers:
    1. The readiness poll sees the playlist on disk
    2. The FFmpeg process reports an error or exits
    3. The startup deadline elapses

Exactly one of them may resolve the start request. ``SettleOnce`` is the
single-assignment cell that enforces this: the first ``settle()`` wins and
runs the disarm callbacks (cancel poll task, cancel deadline timer); every
later ``settle()`` returns False and does nothing.

Readiness is detected by polling because FFmpeg gives no other signal than
its filesystem side effects.

Logging Strategy:
    DEBUG - Arming, poll hits, disarming
    INFO  - Deadline expiry
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Final, Generic, TypeVar

from ..models.session import SessionStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL: Final[float] = 0.5
"""Seconds between playlist existence checks."""

DEFAULT_DEADLINE: Final[float] = 15.0
"""Seconds a session may stay in STARTING."""


# ============================================================================
# Outcome
# ============================================================================

@dataclass(frozen=True)
class StartOutcome:
    """How a start request was resolved."""

    status: SessionStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is SessionStatus.READY


# ============================================================================
# Settle-Once Cell
# ============================================================================

class SettleOnce(Generic[T]):
    """Single-assignment result cell backed by an asyncio Future.

    Must be created while an event loop is running.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._disarm: list[Callable[[], object]] = []

    @property
    def settled(self) -> bool:
        return self._future.done()

    @property
    def value(self) -> T | None:
        if not self._future.done() or self._future.cancelled():
            return None
        return self._future.result()

    def add_disarm(self, callback: Callable[[], object]) -> None:
        """Register a trigger to cancel once settled (runs now if already settled)."""
        if self.settled:
            callback()
        else:
            self._disarm.append(callback)

    def settle(self, value: T) -> bool:
        """Resolve the cell. Returns True only for the winning call."""
        if self._future.done():
            return False
        self._future.set_result(value)
        self._run_disarm()
        return True

    async def wait(self) -> T:
        """Wait for the value. Cancelling the waiter leaves the cell unsettled."""
        return await asyncio.shield(self._future)

    def _run_disarm(self) -> None:
        callbacks, self._disarm = self._disarm, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Disarm callback failed: {e}", exc_info=True)


# ============================================================================
# Readiness Detector
# ============================================================================

class ReadinessDetector:
    """Polls for a playlist file while racing a startup deadline.

    Args:
        poll_interval: Seconds between existence checks
        deadline: Seconds before on_timeout fires
    """

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        deadline: float = DEFAULT_DEADLINE
    ) -> None:
        if poll_interval <= 0 or deadline <= 0:
            raise ValueError("poll_interval and deadline must be positive")
        self.poll_interval = poll_interval
        self.deadline = deadline

    def arm(
        self,
        manifest_path: Path,
        cell: SettleOnce[StartOutcome],
        on_ready: Callable[[], object],
        on_timeout: Callable[[], object]
    ) -> None:
        """Start the poll task and the deadline timer for one session.

        Both are registered as disarm callbacks on ``cell`` so whichever
        trigger settles it first cancels the other two.
        """
        loop = asyncio.get_running_loop()

        poll_task = loop.create_task(self._poll(manifest_path, on_ready))
        deadline_handle = loop.call_later(self.deadline, self._expire, manifest_path, on_timeout)

        cell.add_disarm(poll_task.cancel)
        cell.add_disarm(deadline_handle.cancel)

        logger.debug(
            f"Armed readiness for {manifest_path.parent.name}: "
            f"poll={self.poll_interval}s, deadline={self.deadline}s"
        )

    async def _poll(self, manifest_path: Path, on_ready: Callable[[], object]) -> None:
        try:
            while True:
                await asyncio.sleep(self.poll_interval)
                if manifest_path.exists():
                    logger.debug(f"Playlist observed: {manifest_path}")
                    on_ready()
                    return
        except asyncio.CancelledError:
            logger.debug(f"Readiness poll disarmed: {manifest_path.parent.name}")
            raise

    @staticmethod
    def _expire(manifest_path: Path, on_timeout: Callable[[], object]) -> None:
        logger.info(f"Startup deadline reached: {manifest_path.parent.name}")
        on_timeout()
