"""In-memory registry of live stream sessions.

The registry is the single source of truth for "what is running now".
Terminal sessions are evicted immediately; history survives only in the
metadata store.

All access happens on the event loop thread, so no lock is needed.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from ..models.session import ActiveSession, SessionStatus

if TYPE_CHECKING:
    from .readiness import SettleOnce, StartOutcome
    from .supervisor import SupervisedProcess

logger = logging.getLogger(__name__)


@dataclass
class StreamSession:
    """Runtime state of one source-to-HLS conversion."""

    session_id: str
    source_url: str
    work_dir: Path
    manifest_path: Path
    label: str = ""
    notes: str = ""
    status: SessionStatus = SessionStatus.STARTING
    process: SupervisedProcess | None = None
    resolution: SettleOnce[StartOutcome] | None = None
    started_at: float = field(default_factory=time.time)

    @property
    def uptime_seconds(self) -> float:
        return max(0.0, time.time() - self.started_at)

    @property
    def started_at_iso(self) -> str:
        return datetime.fromtimestamp(self.started_at, tz=timezone.utc).isoformat()

    def to_active(self) -> ActiveSession:
        return ActiveSession(
            session_id=self.session_id,
            source_url=self.source_url,
            label=self.label,
            notes=self.notes,
            status=self.status,
            started_at=self.started_at_iso,
            uptime_seconds=round(self.uptime_seconds, 3),
        )


class SessionRegistry:
    """Mapping of session id to live StreamSession (insertion ordered)."""

    def __init__(self) -> None:
        self._sessions: dict[str, StreamSession] = {}

    def add(self, session: StreamSession) -> None:
        if session.session_id in self._sessions:
            raise KeyError(f"Session already registered: {session.session_id}")
        self._sessions[session.session_id] = session
        logger.debug(f"Registered session {session.session_id} ({len(self._sessions)} active)")

    def get(self, session_id: str) -> StreamSession | None:
        return self._sessions.get(session_id)

    def pop(self, session_id: str) -> StreamSession | None:
        """Remove and return a session; None if it was already evicted."""
        return self._sessions.pop(session_id, None)

    def sessions(self) -> list[StreamSession]:
        return list(self._sessions.values())

    def ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
