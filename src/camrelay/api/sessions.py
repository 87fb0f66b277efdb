"""REST API endpoints for stream sessions and saved sources.

Thin HTTP layer over the SessionManager: request bodies are parsed into
Pydantic models, domain exceptions propagate to the handlers registered in
``api/errors.py``.

Endpoints:
    POST /api/sessions                 - Start a session (waits for readiness)
    GET  /api/sessions                 - List live sessions
    POST /api/sessions/{id}/stop       - Stop a session
    POST /api/sessions/{id}/capture    - Capture a still frame
    GET  /api/sources                  - List saved sources
    POST /api/sources/update           - Edit a saved source's label/notes

Logging Strategy:
    DEBUG - Listings
    INFO  - Start/stop/capture/update requests
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from ..models.session import (
    ActiveSession,
    CaptureResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from ..models.source import SavedSourceRecord, UpdateSourceRequest
from ..services.container import get_session_manager
from ..services.sessions import SessionManager
from ..utils.strings import mask_credentials

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sessions"])


# ============================================================================
# Sessions
# ============================================================================

@router.post("/sessions", status_code=status.HTTP_200_OK)
async def start_session(
    request: StartSessionRequest | None = None,
    manager: SessionManager = Depends(get_session_manager)
) -> StartSessionResponse:
    """Start transcoding a source; replies once the playlist exists.

    Errors:
        400 BAD_REQUEST       - source_url missing or malformed
        502 TRANSCODE_FAILED  - FFmpeg failed before readiness
        504 STARTUP_TIMEOUT   - playlist never appeared
    """
    request = request or StartSessionRequest()
    if isinstance(request.source_url, str):
        logger.info(f"Start requested: {mask_credentials(request.source_url)}")

    result = await manager.start_session(request.source_url, request.label, request.notes)
    return StartSessionResponse(
        session_id=result.session_id,
        label=result.label,
        notes=result.notes,
        playlist_url=result.playlist_url,
    )


@router.get("/sessions")
async def list_sessions(
    manager: SessionManager = Depends(get_session_manager)
) -> list[ActiveSession]:
    sessions = manager.list_active_sessions()
    logger.debug(f"Listed {len(sessions)} active session(s)")
    return sessions


@router.post("/sessions/{session_id}/stop")
async def stop_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager)
) -> dict:
    """Stop a live session (404 if unknown)."""
    logger.info(f"Stop requested: {session_id}")
    manager.stop_session(session_id)
    return {"success": True, "message": "Stream stopped"}


@router.post("/sessions/{session_id}/capture")
async def capture_still(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager)
) -> CaptureResponse:
    """Capture one frame from a live session.

    Errors:
        404 NOT_FOUND       - unknown session
        409 NOT_READY       - playlist not written yet
        500 CAPTURE_FAILED  - extraction failed
    """
    logger.info(f"Capture requested: {session_id}")
    result = await manager.capture(session_id)
    return CaptureResponse(file_name=result.file_name, file_url=result.file_url)


# ============================================================================
# Saved Sources
# ============================================================================

@router.get("/sources", tags=["sources"])
async def list_sources(
    manager: SessionManager = Depends(get_session_manager)
) -> list[SavedSourceRecord]:
    records = manager.list_saved_sources()
    logger.debug(f"Listed {len(records)} saved source(s)")
    return records


@router.post("/sources/update", tags=["sources"])
async def update_source(
    request: UpdateSourceRequest | None = None,
    manager: SessionManager = Depends(get_session_manager)
) -> dict:
    """Replace label/notes of a saved source (created if unknown)."""
    request = request or UpdateSourceRequest()
    record = manager.update_saved_source_metadata(request.source_url, request.label, request.notes)
    return {"success": True, "source": record.model_dump()}
