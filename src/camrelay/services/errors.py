"""Domain exceptions raised by the session lifecycle manager.

Every process-level and filesystem-level failure is translated into one of
these at the component boundary; the API layer maps them onto HTTP status
codes and the standard error body (see ``api/errors.py``).

Taxonomy:
    BAD_REQUEST       - missing/invalid input, nothing allocated yet
    TRANSCODE_FAILED  - FFmpeg errored or exited before the playlist appeared
    STARTUP_TIMEOUT   - playlist never appeared before the deadline
    NOT_FOUND         - unknown session id / artifact / capture file
    NOT_READY         - capture requested before any output exists
    CAPTURE_FAILED    - still-frame extraction failed

Persistence failures have no exception here: they are logged by the
metadata store and never surfaced to callers.
"""
from __future__ import annotations

from typing import Any


class StreamError(Exception):
    """Base class for errors reported to API callers."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class BadRequestError(StreamError):
    code = "BAD_REQUEST"
    status_code = 400


class TranscodeFailedError(StreamError):
    code = "TRANSCODE_FAILED"
    status_code = 502


class StartupTimeoutError(StreamError):
    code = "STARTUP_TIMEOUT"
    status_code = 504


class SessionNotFoundError(StreamError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: str, message: str = "Stream not found") -> None:
        super().__init__(message, {"session_id": session_id})
        self.session_id = session_id


class CaptureNotFoundError(StreamError):
    code = "NOT_FOUND"
    status_code = 404


class NotReadyError(StreamError):
    code = "NOT_READY"
    status_code = 409


class CaptureFailedError(StreamError):
    code = "CAPTURE_FAILED"
    status_code = 500
