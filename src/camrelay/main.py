"""FastAPI application entry point for CamRelay.

CamRelay: on-demand conversion of live camera sources (RTSP and friends)
into HLS sessions that browsers can play.

Architecture:
    - FastAPI async web framework, single event loop
    - One FFmpeg subprocess per session writing a rolling HLS playlist
    - Singleton SessionManager owning the live registry and processes
    - YAML file of saved sources (labels, notes, capture history)
    - Optional static frontend

Critical Design Decisions:
    1. Singleton SessionManager: all requests use the SAME instance, since
       the registry of live sessions only exists in its memory.

    2. Container Module: breaks the import cycle between main.py and the API
       routers by storing the singleton in a neutral module.

    3. Lifespan Context: startup builds the manager (unless one was
       installed beforehand, e.g. by tests); shutdown stops every session,
       reaps FFmpeg and removes the transient streams directory.

Logging Strategy:
    INFO  - Application lifecycle, configuration summary
    DEBUG - Internal state
    WARN  - Missing frontend
    ERROR - Unrecoverable errors with stack traces

Version: 1.0.0
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging
import os

from fastapi import FastAPI, Response
from fastapi.staticfiles import StaticFiles

from . import __version__
from .api import artifacts, health, sessions
from .api.errors import register_exception_handlers
from .config.settings import Settings
from .logging_config import configure_logging
from .metadata_store import MetadataStore
from .metrics import get_metrics
from .services import container
from .services.sessions import SessionManager

logger = logging.getLogger(__name__)

# Setup logging before anything else
configure_logging()


def build_session_manager(settings: Settings | None = None) -> SessionManager:
    """Create a SessionManager backed by the configured metadata file."""
    settings = settings or Settings.from_env()
    store = MetadataStore(settings.sources_file)
    return SessionManager(settings, store)


# ============================================================================
# Application Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup, running, shutdown.

    Startup Phase:
        1. Build the singleton SessionManager (or adopt a pre-installed one)
        2. Create the streams root and captures directory

    Shutdown Phase:
        1. Clean up every live session as stopped
        2. Wait for FFmpeg reaping, remove the streams root
    """
    logger.info("=" * 80)
    logger.info("CamRelay starting...")
    logger.info("=" * 80)

    if container.session_manager is None:
        container.session_manager = build_session_manager()
    manager = container.session_manager
    manager.prepare_directories()

    logger.info(f"Streams dir: {manager.settings.streams_dir}")
    logger.info(f"Captures dir: {manager.settings.captures_dir}")
    logger.info(f"Saved sources: {manager.settings.sources_file} ({len(manager.list_saved_sources())} record(s))")
    logger.info("API documentation: /docs and /redoc")
    logger.info("=" * 80)
    logger.info("CamRelay ready")
    logger.info("=" * 80)

    try:
        yield
    finally:
        logger.info("=" * 80)
        logger.info("CamRelay shutting down...")
        logger.info("=" * 80)

        try:
            await manager.shutdown()
        except Exception as e:
            logger.error(f"Shutdown error: {e}", exc_info=True)
        finally:
            container.session_manager = None

        logger.info("CamRelay shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="CamRelay",
    description=(
        "Live camera sources to HLS.\n\n"
        "Features:\n"
        "- On-demand FFmpeg transcoding sessions\n"
        "- Startup readiness detection with deadline\n"
        "- Still-frame capture\n"
        "- Saved sources with labels, notes and capture history"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

register_exception_handlers(app)

# ============================================================================
# Routers
# ============================================================================

app.include_router(health.router)
app.include_router(sessions.router)
app.include_router(artifacts.router)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition."""
    body, status_code, headers = get_metrics()
    return Response(content=body, status_code=status_code, headers=headers)


# ============================================================================
# Static Files (Frontend)
# ============================================================================

STATIC_DIR = os.getenv("STATIC_ROOT", "./public")

if os.path.isdir(STATIC_DIR):
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="frontend")
    logger.info(f"Frontend: {STATIC_DIR}")
else:
    logger.warning(f"Frontend not found: {STATIC_DIR}")
    logger.info("API endpoints still available at /api/*")

logger.debug(f"Config: LOG_LEVEL={os.getenv('LOG_LEVEL', 'INFO')}, PORT={os.getenv('APP_PORT', '8000')}, STATIC={STATIC_DIR}")
