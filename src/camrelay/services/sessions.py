"""Stream session lifecycle management.

Manages the source-to-HLS session lifecycle:
- Start: register session, spawn FFmpeg, race readiness poll vs. deadline
- Stop / failure / timeout / shutdown: single idempotent cleanup path
- Listing of live sessions
- Still-frame capture and saved source metadata
- Resolution of session artifacts (playlist, segments) and captured stills

State Machine:
    starting -> ready | failed | timed_out
    ready    -> stopped
    Terminal sessions are evicted from the registry as part of cleanup.

Exactly-Once Start Resolution:
    A start request can be resolved by the readiness poll, by an FFmpeg
    error/end event, or by the deadline. Each session carries a SettleOnce
    cell; the first trigger settles it and disarms the others. Cleanup
    settles the cell too, so a stop or shutdown during startup also
    resolves the waiting request exactly once.

Concurrency:
    Everything runs on the asyncio event loop; FFmpeg events arrive through
    supervisor watcher tasks. Late events for an already cleaned-up session
    are no-ops.

Logging Strategy:
    DEBUG - Trigger races lost, artifact lookups
    INFO  - Session lifecycle (start, ready, stop, cleanup), shutdown
    WARN  - Sessions failing or timing out
    ERROR - Directory preparation failures
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Final

from ..config.ffmpeg_defaults import MANIFEST_NAME, build_hls_command
from ..config.settings import Settings
from ..metadata_store import MetadataStore
from ..models.session import ActiveSession, SessionStatus
from ..models.source import SavedSourceRecord
from ..utils.strings import mask_credentials, sanitize_label, sanitize_notes
from ..utils.validation import validate_source_url
from .capture import CaptureResult, CaptureService
from .errors import (
    BadRequestError,
    CaptureNotFoundError,
    NotReadyError,
    SessionNotFoundError,
    StartupTimeoutError,
    TranscodeFailedError,
)
from .readiness import ReadinessDetector, SettleOnce, StartOutcome
from .registry import SessionRegistry, StreamSession
from .supervisor import ProcessSupervisor, Spawner
from .. import metrics

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

STREAM_URL_PREFIX: Final[str] = "/stream"
"""URL prefix under which session artifacts are served."""

MEDIA_TYPES: Final[dict[str, str]] = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
}
"""Content types advertised for session artifacts."""

DEFAULT_MEDIA_TYPE: Final[str] = "application/octet-stream"

MSG_TRANSCODE_FAILED: Final[str] = "Failed to start stream - check source URL and credentials"
MSG_ENDED_EARLY: Final[str] = "Stream ended before startup completed"
MSG_TIMED_OUT: Final[str] = "Stream startup timed out"
MSG_STOPPED: Final[str] = "Stream stopped"


def media_type_for(file_name: str) -> str:
    """Content type for a session artifact based on its extension."""
    return MEDIA_TYPES.get(Path(file_name).suffix.lower(), DEFAULT_MEDIA_TYPE)


def _is_plain_file_name(file_name: str) -> bool:
    return bool(file_name) and file_name not in (".", "..") and Path(file_name).name == file_name and "\\" not in file_name


@dataclass(frozen=True)
class StartResult:
    session_id: str
    label: str
    notes: str

    @property
    def playlist_url(self) -> str:
        return f"{STREAM_URL_PREFIX}/{self.session_id}/{MANIFEST_NAME}"


@dataclass(frozen=True)
class SessionArtifact:
    path: Path
    media_type: str


# ============================================================================
# Session Manager
# ============================================================================

class SessionManager:
    """Lifecycle manager for concurrent source-to-HLS sessions.

    Attributes:
        settings: Resolved configuration
        store: Saved source records
        registry: Live sessions
        supervisor: FFmpeg process owner
    """

    def __init__(
        self,
        settings: Settings,
        store: MetadataStore,
        spawner: Spawner | None = None
    ) -> None:
        self.settings = settings
        self.store = store
        self.registry = SessionRegistry()
        self.supervisor = ProcessSupervisor(spawner, stop_timeout=settings.stop_timeout_secs)
        self.detector = ReadinessDetector(
            poll_interval=settings.startup_poll_seconds,
            deadline=settings.startup_timeout_seconds
        )
        self.capture_service = CaptureService(
            self.supervisor,
            store,
            settings.captures_dir,
            ffmpeg_binary=settings.ffmpeg_binary,
            timeout=settings.capture_timeout_secs
        )
        logger.info(
            f"SessionManager initialized: poll={settings.startup_poll_ms}ms, "
            f"timeout={settings.startup_timeout_ms}ms"
        )

    def prepare_directories(self) -> None:
        """Create the streams root and captures directory."""
        self.settings.streams_dir.mkdir(parents=True, exist_ok=True)
        self.settings.captures_dir.mkdir(parents=True, exist_ok=True)

    # ========================================================================
    # Start
    # ========================================================================

    async def start_session(
        self,
        source_url: Any,
        label: Any = None,
        notes: Any = None
    ) -> StartResult:
        """Start transcoding a source and wait until its playlist exists.

        Raises:
            BadRequestError: Missing or malformed source URL
            TranscodeFailedError: FFmpeg failed or exited before readiness
            StartupTimeoutError: Playlist never appeared before the deadline
        """
        is_valid, error_msg = validate_source_url(source_url)
        if not is_valid:
            metrics.session_starts_total.labels(outcome="bad_request").inc()
            raise BadRequestError(error_msg or "Source URL is required")

        source_url = source_url.strip()
        safe_label = sanitize_label(label)
        safe_notes = sanitize_notes(notes)

        session_id = str(uuid.uuid4())
        work_dir = self.settings.streams_dir / session_id
        try:
            work_dir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            logger.error(f"Failed to create work dir {work_dir}: {e}")
            metrics.session_starts_total.labels(outcome=SessionStatus.FAILED.value).inc()
            raise TranscodeFailedError("Failed to prepare stream directory") from e

        cell: SettleOnce[StartOutcome] = SettleOnce()
        session = StreamSession(
            session_id=session_id,
            source_url=source_url,
            work_dir=work_dir,
            manifest_path=work_dir / MANIFEST_NAME,
            label=safe_label,
            notes=safe_notes,
            resolution=cell,
        )
        self.registry.add(session)
        metrics.sessions_active.set(len(self.registry))
        started = time.monotonic()

        logger.info(f"Starting stream {session_id} for URL: {mask_credentials(source_url)}")

        command = build_hls_command(
            source_url,
            work_dir,
            segment_seconds=self.settings.segment_seconds,
            list_size=self.settings.segment_window,
            binary=self.settings.ffmpeg_binary
        )
        try:
            session.process = await self.supervisor.start(
                session_id,
                command,
                on_error=partial(self._on_process_error, session_id),
                on_end=partial(self._on_process_end, session_id)
            )

            if self.registry.get(session_id) is session:
                self.detector.arm(
                    session.manifest_path,
                    cell,
                    on_ready=partial(self._on_ready, session_id),
                    on_timeout=partial(self._on_timeout, session_id)
                )
            else:
                # Cleaned up while spawning (stop or shutdown)
                self.supervisor.terminate(session.process)

            outcome = await cell.wait()
        except asyncio.CancelledError:
            self._cleanup(session_id, StartOutcome(SessionStatus.FAILED, "Start request cancelled"))
            raise

        metrics.session_starts_total.labels(outcome=outcome.status.value).inc()

        if outcome.ok:
            metrics.session_startup_seconds.observe(time.monotonic() - started)
            logger.info(f"Stream {session_id} ready in {time.monotonic() - started:.2f}s")
            return StartResult(session_id=session_id, label=safe_label, notes=safe_notes)

        details = {"session_id": session_id}
        if outcome.status is SessionStatus.TIMED_OUT:
            raise StartupTimeoutError(outcome.message or MSG_TIMED_OUT, details)
        raise TranscodeFailedError(outcome.message or MSG_TRANSCODE_FAILED, details)

    # ========================================================================
    # Trigger Handlers
    # ========================================================================

    def _on_ready(self, session_id: str) -> None:
        session = self.registry.get(session_id)
        if session is None or session.status is not SessionStatus.STARTING:
            return
        if session.resolution is None or not session.resolution.settle(StartOutcome(SessionStatus.READY)):
            logger.debug(f"[{session_id}] Readiness lost the race")
            return

        session.status = SessionStatus.READY
        self.store.upsert_on_start(session.source_url, session_id, session.label, session.notes)

    def _on_process_error(self, session_id: str, message: str) -> None:
        logger.error(f"FFmpeg error for stream {session_id}: {message}")
        self._cleanup(session_id, StartOutcome(SessionStatus.FAILED, MSG_TRANSCODE_FAILED))

    def _on_process_end(self, session_id: str) -> None:
        logger.info(f"FFmpeg ended for stream {session_id}")
        self._cleanup(session_id, StartOutcome(SessionStatus.FAILED, MSG_ENDED_EARLY))

    def _on_timeout(self, session_id: str) -> None:
        self._cleanup(session_id, StartOutcome(SessionStatus.TIMED_OUT, MSG_TIMED_OUT))

    # ========================================================================
    # Cleanup
    # ========================================================================

    def _cleanup(self, session_id: str, outcome: StartOutcome) -> bool:
        """Tear a session down: evict, resolve, terminate FFmpeg, remove files.

        ``outcome`` describes what happens to a session still STARTING; a
        READY session always ends as STOPPED. Safe to call repeatedly.

        Returns:
            True if this call performed the cleanup
        """
        session = self.registry.pop(session_id)
        if session is None:
            logger.debug(f"[{session_id}] Cleanup skipped: already cleaned up")
            return False

        if session.status is SessionStatus.STARTING:
            session.status = outcome.status
        else:
            session.status = SessionStatus.STOPPED

        if session.resolution is not None:
            session.resolution.settle(StartOutcome(session.status, outcome.message))

        self.supervisor.terminate(session.process)
        shutil.rmtree(session.work_dir, ignore_errors=True)

        metrics.session_stops_total.labels(reason=session.status.value).inc()
        metrics.sessions_active.set(len(self.registry))

        if session.status in (SessionStatus.FAILED, SessionStatus.TIMED_OUT):
            logger.warning(f"Cleaned up stream {session_id} ({session.status.value}): {outcome.message}")
        else:
            logger.info(f"Cleaned up stream: {session_id}")
        return True

    # ========================================================================
    # Stop / List
    # ========================================================================

    def stop_session(self, session_id: str) -> None:
        """Stop a session.

        Raises:
            SessionNotFoundError: Unknown session id (no state is touched)
        """
        if session_id not in self.registry:
            raise SessionNotFoundError(session_id)
        self._cleanup(session_id, StartOutcome(SessionStatus.STOPPED, MSG_STOPPED))

    def list_active_sessions(self) -> list[ActiveSession]:
        return [session.to_active() for session in self.registry.sessions()]

    # ========================================================================
    # Capture
    # ========================================================================

    async def capture(self, session_id: str) -> CaptureResult:
        """Capture a still from a session's current output.

        Raises:
            SessionNotFoundError: Unknown session id
            NotReadyError: Playlist not written yet
            CaptureFailedError: Extraction failed
        """
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        if not session.manifest_path.exists():
            raise NotReadyError("Stream playlist not ready", {"session_id": session_id})

        return await self.capture_service.capture(session)

    # ========================================================================
    # Saved Sources
    # ========================================================================

    def list_saved_sources(self) -> list[SavedSourceRecord]:
        return self.store.records

    def update_saved_source_metadata(
        self,
        source_url: Any,
        label: Any = None,
        notes: Any = None
    ) -> SavedSourceRecord:
        """Replace a source's label/notes (BadRequestError if URL missing)."""
        record = self.store.update_metadata_only(source_url, label, notes)
        logger.info(f"Updated saved source: {mask_credentials(record.source_url)}")
        return record

    # ========================================================================
    # Artifacts
    # ========================================================================

    def resolve_artifact(self, session_id: str, file_name: str) -> SessionArtifact:
        """Locate a playlist/segment file of a live session.

        Raises:
            SessionNotFoundError: Unknown session, unsafe name or missing file
        """
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        if not _is_plain_file_name(file_name):
            logger.debug(f"[{session_id}] Rejected artifact name: {file_name!r}")
            raise SessionNotFoundError(session_id, "File not found")

        path = session.work_dir / file_name
        if not path.is_file():
            raise SessionNotFoundError(session_id, "File not found")

        return SessionArtifact(path=path, media_type=media_type_for(file_name))

    def resolve_capture(self, file_name: str) -> Path:
        """Locate a captured still in the shared captures directory."""
        if not _is_plain_file_name(file_name):
            raise CaptureNotFoundError("Capture not found", {"file_name": file_name})

        path = self.settings.captures_dir / file_name
        if not path.is_file():
            raise CaptureNotFoundError("Capture not found", {"file_name": file_name})
        return path

    # ========================================================================
    # Shutdown
    # ========================================================================

    async def shutdown(self) -> None:
        """Clean up every live session and remove transient work directories."""
        session_ids = self.registry.ids()
        if session_ids:
            logger.info(f"Stopping {len(session_ids)} stream(s)...")
        else:
            logger.info("No running streams to stop")

        for session_id in session_ids:
            self._cleanup(session_id, StartOutcome(SessionStatus.STOPPED, "Service shutting down"))

        await self.supervisor.aclose()
        shutil.rmtree(self.settings.streams_dir, ignore_errors=True)
        logger.info("Session manager shut down")
