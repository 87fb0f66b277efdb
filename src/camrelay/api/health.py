"""Health check endpoints for service monitoring.

Health Status Levels:
    - healthy: Every live session has a running FFmpeg process
    - degraded: Some registered session has no running process (it is about
      to be cleaned up, or FFmpeg failed to spawn)

Logging Strategy:
    DEBUG - Health check calls
    WARN  - Degraded status

Usage:
    >>> GET /health
    {
        "status": "healthy",
        "sessions": {"total": 2, "starting": 1, "ready": 1},
        "ffmpeg_processes": 2
    }

    >>> GET /health/live
    {"status": "alive"}
"""
from fastapi import APIRouter, Depends, status
from typing import Any, Dict, List, Literal
import logging

from ..models.session import SessionStatus
from ..services.container import get_session_manager
from ..services.sessions import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HealthStatus = Literal["healthy", "degraded"]
ProbeStatus = Literal["alive"]


def find_orphaned_sessions(manager: SessionManager) -> List[str]:
    """Session ids registered without a running FFmpeg process."""
    orphaned = []
    for session in manager.registry.sessions():
        if session.process is None or not session.process.running:
            orphaned.append(session.session_id)
    return orphaned


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(
    manager: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    """Session counts by status plus FFmpeg process count."""
    logger.debug("Processing health check")

    live = manager.registry.sessions()
    counts = {
        "total": len(live),
        SessionStatus.STARTING.value: sum(1 for s in live if s.status is SessionStatus.STARTING),
        SessionStatus.READY.value: sum(1 for s in live if s.status is SessionStatus.READY),
    }

    orphaned = find_orphaned_sessions(manager)
    overall: HealthStatus = "degraded" if orphaned else "healthy"

    response: Dict[str, Any] = {
        "status": overall,
        "sessions": counts,
        "ffmpeg_processes": manager.supervisor.active_count,
    }
    if orphaned:
        response["errors"] = [f"{session_id}: no running FFmpeg process" for session_id in orphaned]
        logger.warning(f"Health check: degraded - {len(orphaned)} session(s) without FFmpeg")

    return response


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> Dict[str, ProbeStatus]:
    """Liveness probe: answers as long as the event loop is responsive."""
    return {"status": "alive"}
