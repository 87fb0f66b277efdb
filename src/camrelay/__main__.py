"""Run the CamRelay server with uvicorn.

Environment:
    APP_PORT: listen port (default: 8000)
    APP_HOST: bind address (default: 0.0.0.0)
"""
from __future__ import annotations

import logging
import os

import uvicorn

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8000


def get_port() -> int:
    raw = os.getenv("APP_PORT", str(DEFAULT_PORT))
    try:
        port = int(raw)
    except ValueError:
        logger.warning(f"Invalid APP_PORT '{raw}', using {DEFAULT_PORT}")
        return DEFAULT_PORT
    if not 0 < port < 65536:
        logger.warning(f"APP_PORT out of range '{raw}', using {DEFAULT_PORT}")
        return DEFAULT_PORT
    return port


def main() -> None:
    uvicorn.run(
        "camrelay.main:app",
        host=os.getenv("APP_HOST", "0.0.0.0"),
        port=get_port(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
