"""Prometheus metrics for observability.

Provides metrics for:
- Session lifecycle (starts by outcome, startup latency, stops, active count)
- FFmpeg processes (active count)
- Still-frame captures
- Metadata persistence failures

Logging Strategy:
    ERROR - Metric generation failures
"""
from __future__ import annotations

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

from . import __version__

logger = logging.getLogger(__name__)

# ============================================================================
# Application Info
# ============================================================================

app_info = Info("camrelay_app", "Application information")
app_info.info({
    "version": __version__,
    "name": "CamRelay",
    "description": "Live camera sources to HLS sessions"
})

# ============================================================================
# Session Metrics
# ============================================================================

sessions_active = Gauge("camrelay_sessions_active", "Sessions currently registered")

session_starts_total = Counter(
    "camrelay_session_starts_total",
    "Session start attempts by outcome",
    ["outcome"]  # ready, failed, timed_out, bad_request
)

session_startup_seconds = Histogram(
    "camrelay_session_startup_seconds",
    "Time from start request to playlist availability",
    buckets=(0.5, 1.0, 2.0, 3.0, 5.0, 7.5, 10.0, 15.0, 30.0)
)

session_stops_total = Counter(
    "camrelay_session_stops_total",
    "Sessions cleaned up by reason",
    ["reason"]  # stopped, failed, timed_out
)

# ============================================================================
# Process Metrics
# ============================================================================

ffmpeg_processes_active = Gauge("camrelay_ffmpeg_processes_active", "Running FFmpeg processes")

# ============================================================================
# Capture / Persistence Metrics
# ============================================================================

captures_total = Counter(
    "camrelay_captures_total",
    "Still-frame captures by status",
    ["status"]  # success, failure
)

metadata_persist_failures_total = Counter(
    "camrelay_metadata_persist_failures_total",
    "Failed writes of the saved sources file"
)

# ============================================================================
# Metrics Export
# ============================================================================

def get_metrics() -> tuple[bytes, int, dict[str, str]]:
    """Generate Prometheus metrics in text format.

    Returns:
        (body, status_code, headers) for a FastAPI Response
    """
    try:
        body = generate_latest(REGISTRY)
        return (body, 200, {"Content-Type": CONTENT_TYPE_LATEST})
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        return (b"# Error\n", 500, {"Content-Type": "text/plain"})
