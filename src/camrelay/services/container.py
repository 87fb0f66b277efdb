"""Service container for singleton instances.

Holds the global SessionManager so API modules can depend on it without
importing main.py.
Pattern: main.py lifespan builds the manager → container stores it → API injects it

Critical Design Note:
    Every request must see the SAME SessionManager, because the live
    session registry and the FFmpeg processes exist only in its memory. A
    second instance would answer "Stream not found" for sessions the first
    one started.

Logging Strategy:
    DEBUG - Service dependency injection
    ERROR - Service not initialized (critical failure)
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .sessions import SessionManager

logger = logging.getLogger(__name__)

# ============================================================================
# Global Singleton Instance
# ============================================================================

session_manager: SessionManager | None = None
"""Global SessionManager singleton initialized during app startup."""


# ============================================================================
# Dependency Injection
# ============================================================================

def get_session_manager() -> SessionManager:
    """Get the global SessionManager for dependency injection.

    Returns:
        Global SessionManager instance

    Raises:
        RuntimeError: If called before app startup (manager not initialized)

    Example:
        >>> @router.get("/sessions")
        >>> async def list_sessions(
        ...     manager: SessionManager = Depends(get_session_manager)
        ... ):
        ...     return manager.list_active_sessions()
    """
    if session_manager is None:
        logger.error("SessionManager dependency requested before initialization")
        raise RuntimeError(
            "SessionManager not initialized. "
            "Application startup may have failed."
        )

    logger.debug("Injecting SessionManager singleton")
    return session_manager
