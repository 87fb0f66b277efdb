"""Input validation for stream source URLs.

Only structural checks are made here: a source must be a non-empty URL with
a scheme and a location. Whether the transcoder can actually open it is
decided by the transcoder.

Note on Logging:
    Returns (bool, error_message). Only logs when URL parsing itself blows up;
    the caller decides how to report an invalid URL.
"""
from __future__ import annotations

import logging
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Type alias for validation results
ValidationResult = tuple[bool, str | None]
"""Validation result: (is_valid, error_message)"""

# ============================================================================
# Source URL Validation
# ============================================================================

def validate_source_url(url: object) -> ValidationResult:
    """Validate a source URL before any resources are allocated.

    Checks:
    - Value is a non-empty string
    - URL has a scheme (rtsp, rtsps, rtmp, http, srt, ...)
    - URL has a host or path to read from

    Examples:
        >>> validate_source_url("rtsp://192.168.1.100/stream")
        (True, None)

        >>> validate_source_url("")
        (False, 'Source URL is required')
    """
    if not isinstance(url, str) or not url.strip():
        return False, "Source URL is required"

    try:
        parsed = urlparse(url.strip())
    except ValueError as e:
        logger.warning(f"URL parse error: {e}")
        return False, f"Invalid URL format: {e}"

    if not parsed.scheme:
        return False, "Source URL must include a scheme (e.g. rtsp://)"

    if not (parsed.netloc or parsed.path):
        return False, "Source URL must include a host"

    return True, None
