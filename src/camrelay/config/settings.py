"""Runtime configuration for the session lifecycle manager.

All options come from the environment with sane defaults. Invalid values
never abort startup: they are logged and replaced by the default, the same
way LOG_LEVEL and LOG_FORMAT are handled.

Environment:
    STREAM_STARTUP_POLL_MS:    manifest poll interval (default: 500)
    STREAM_STARTUP_TIMEOUT_MS: startup deadline (default: 15000)
    DATA_DIR:                  base directory for all state (default: ./data)
    STREAMS_DIR:               per-session work directory root
    CAPTURES_DIR:              shared still-frame directory
    SOURCES_FILE:              saved source record file
    FFMPEG_BINARY:             transcoder executable (default: ffmpeg)
    CAPTURE_TIMEOUT_SECS:      still-frame extraction timeout (default: 20)
    STOP_TIMEOUT_SECS:         SIGTERM grace period before SIGKILL (default: 5)
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

from pydantic import BaseModel, Field

from .ffmpeg_defaults import HLS_LIST_SIZE, HLS_SEGMENT_SECONDS

logger = logging.getLogger(__name__)

# ============================================================================
# Defaults
# ============================================================================

DEFAULT_POLL_MS: Final[int] = 500
DEFAULT_STARTUP_TIMEOUT_MS: Final[int] = 15_000
DEFAULT_CAPTURE_TIMEOUT_SECS: Final[float] = 20.0
DEFAULT_STOP_TIMEOUT_SECS: Final[float] = 5.0
DEFAULT_DATA_DIR: Final[str] = "./data"


# ============================================================================
# Settings Model
# ============================================================================

class Settings(BaseModel):
    """Resolved configuration consumed by the session manager."""

    startup_poll_ms: int = Field(
        default=DEFAULT_POLL_MS,
        gt=0,
        description="Interval between manifest existence checks"
    )

    startup_timeout_ms: int = Field(
        default=DEFAULT_STARTUP_TIMEOUT_MS,
        gt=0,
        description="Deadline for the manifest to appear"
    )

    segment_seconds: int = Field(
        default=HLS_SEGMENT_SECONDS,
        gt=0,
        description="Target HLS segment duration"
    )

    segment_window: int = Field(
        default=HLS_LIST_SIZE,
        gt=0,
        description="Segments kept in the rolling playlist"
    )

    streams_dir: Path = Field(description="Root of per-session work directories")
    captures_dir: Path = Field(description="Shared still-frame directory")
    sources_file: Path = Field(description="Saved source record file")

    ffmpeg_binary: str = Field(default="ffmpeg", min_length=1)

    capture_timeout_secs: float = Field(default=DEFAULT_CAPTURE_TIMEOUT_SECS, gt=0)
    stop_timeout_secs: float = Field(default=DEFAULT_STOP_TIMEOUT_SECS, gt=0)

    @property
    def startup_poll_seconds(self) -> float:
        return self.startup_poll_ms / 1000.0

    @property
    def startup_timeout_seconds(self) -> float:
        return self.startup_timeout_ms / 1000.0

    @classmethod
    def for_data_dir(cls, data_dir: str | Path, **overrides: object) -> Settings:
        """Build settings rooted at one data directory (handy for tests)."""
        base = Path(data_dir)
        values: dict[str, object] = {
            "streams_dir": base / "streams",
            "captures_dir": base / "captures",
            "sources_file": base / "saved-sources.yml",
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_env(cls) -> Settings:
        """Read settings from the process environment."""
        data_dir = Path(os.getenv("DATA_DIR", DEFAULT_DATA_DIR))

        settings = cls(
            startup_poll_ms=_env_int("STREAM_STARTUP_POLL_MS", DEFAULT_POLL_MS),
            startup_timeout_ms=_env_int("STREAM_STARTUP_TIMEOUT_MS", DEFAULT_STARTUP_TIMEOUT_MS),
            streams_dir=Path(os.getenv("STREAMS_DIR", str(data_dir / "streams"))),
            captures_dir=Path(os.getenv("CAPTURES_DIR", str(data_dir / "captures"))),
            sources_file=Path(os.getenv("SOURCES_FILE", str(data_dir / "saved-sources.yml"))),
            ffmpeg_binary=os.getenv("FFMPEG_BINARY", "ffmpeg") or "ffmpeg",
            capture_timeout_secs=_env_float("CAPTURE_TIMEOUT_SECS", DEFAULT_CAPTURE_TIMEOUT_SECS),
            stop_timeout_secs=_env_float("STOP_TIMEOUT_SECS", DEFAULT_STOP_TIMEOUT_SECS),
        )

        logger.debug(
            f"Settings: poll={settings.startup_poll_ms}ms, "
            f"timeout={settings.startup_timeout_ms}ms, "
            f"streams={settings.streams_dir}, captures={settings.captures_dir}"
        )
        return settings


# ============================================================================
# Environment Parsing
# ============================================================================

def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}', using {default}")
        return default
    if value <= 0:
        logger.warning(f"Non-positive {name} '{raw}', using {default}")
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}', using {default}")
        return default
    if value <= 0:
        logger.warning(f"Non-positive {name} '{raw}', using {default}")
        return default
    return value
