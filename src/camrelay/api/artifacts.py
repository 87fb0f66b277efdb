"""File endpoints for HLS output and captured stills.

    GET /stream/{session_id}/{file_name}  - playlist or segment of a live session
    GET /captures/{file_name}             - captured JPEG

Stream artifacts are readable cross-origin so external players can load
them. Playlists change every segment and are served uncached.
"""
from __future__ import annotations

import logging
from typing import Final

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..services.container import get_session_manager
from ..services.sessions import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["artifacts"])

CORS_HEADERS: Final[dict[str, str]] = {"Access-Control-Allow-Origin": "*"}
NO_CACHE: Final[str] = "no-cache, no-store, must-revalidate"


@router.get("/stream/{session_id}/{file_name}")
async def read_session_artifact(
    session_id: str,
    file_name: str,
    manager: SessionManager = Depends(get_session_manager)
) -> FileResponse:
    artifact = manager.resolve_artifact(session_id, file_name)
    logger.debug(f"[{session_id}] Serving {file_name}")

    headers = dict(CORS_HEADERS)
    if artifact.media_type == "application/vnd.apple.mpegurl":
        headers["Cache-Control"] = NO_CACHE
    return FileResponse(artifact.path, media_type=artifact.media_type, headers=headers)


@router.get("/captures/{file_name}")
async def read_capture(
    file_name: str,
    manager: SessionManager = Depends(get_session_manager)
) -> FileResponse:
    path = manager.resolve_capture(file_name)
    return FileResponse(path, media_type="image/jpeg")
