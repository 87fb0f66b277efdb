"""Still-frame capture from a live session.

Runs a one-shot FFmpeg against the session's current playlist, writes one
JPEG into the shared captures directory and records it in the metadata
store under the session's source URL (so history survives session churn).

File names are ``<session_id>-<UTC timestamp>.jpg`` with ':' and '.'
replaced by '-', which keeps them unique without any locking.

Logging Strategy:
    INFO  - Successful captures
    ERROR - Extraction failures
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Final

from ..config.ffmpeg_defaults import build_capture_command
from ..metadata_store import MetadataStore
from .errors import CaptureFailedError
from .registry import StreamSession
from .supervisor import ProcessSupervisor
from .. import metrics

logger = logging.getLogger(__name__)

CAPTURES_URL_PREFIX: Final[str] = "/captures"
"""URL prefix under which captured stills are served."""

_UNSAFE_TIMESTAMP_CHARS: Final[re.Pattern[str]] = re.compile(r"[:.]")


@dataclass(frozen=True)
class CaptureResult:
    file_name: str
    path: Path

    @property
    def file_url(self) -> str:
        return f"{CAPTURES_URL_PREFIX}/{self.file_name}"


def capture_file_name(session_id: str, now: datetime | None = None) -> str:
    """Collision-free capture name for a session.

    Example:
        >>> capture_file_name("abc", datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
        'abc-2025-01-02T03-04-05-678Z.jpg'
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"{session_id}-{_UNSAFE_TIMESTAMP_CHARS.sub('-', stamp)}.jpg"


class CaptureService:
    """Extracts stills from ready sessions."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        store: MetadataStore,
        captures_dir: Path,
        ffmpeg_binary: str = "ffmpeg",
        timeout: float = 20.0
    ) -> None:
        self.supervisor = supervisor
        self.store = store
        self.captures_dir = Path(captures_dir)
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout = timeout

    async def capture(self, session: StreamSession) -> CaptureResult:
        """Grab one frame from the session playlist.

        The caller has already checked that the session exists and that its
        playlist is on disk.

        Raises:
            CaptureFailedError: FFmpeg failed, timed out or wrote nothing
        """
        file_name = capture_file_name(session.session_id)
        output_path = self.captures_dir / file_name
        self.captures_dir.mkdir(parents=True, exist_ok=True)

        command = build_capture_command(session.manifest_path, output_path, self.ffmpeg_binary)
        result = await self.supervisor.run(f"capture:{session.session_id}", command, self.timeout)

        if not result.ok or not output_path.exists():
            metrics.captures_total.labels(status="failure").inc()
            reason = "timed out" if result.timed_out else f"exit code {result.returncode}"
            logger.error(f"[{session.session_id}] Screenshot failed ({reason}): {result.stderr_tail or 'no output'}")
            output_path.unlink(missing_ok=True)
            raise CaptureFailedError(
                "Failed to capture screenshot",
                {"session_id": session.session_id, "reason": reason}
            )

        self.store.append_screenshot(session.source_url, session.session_id, file_name)
        metrics.captures_total.labels(status="success").inc()
        logger.info(f"[{session.session_id}] Screenshot captured: {file_name}")
        return CaptureResult(file_name=file_name, path=output_path)
