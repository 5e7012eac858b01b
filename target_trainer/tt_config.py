"""
Central configuration and tunables.

If you need to change the server address, backoff policy, or ranges, do it here.
Prefer environment overrides where sensible.
"""

import os

# Serving side (devices are reached through it)
SERVER_HOST: str = os.getenv("TT_SERVER_HOST", "localhost:8080")
SERVER_SECURE: bool = bool(int(os.getenv("TT_SERVER_SECURE", "0")))
WS_PATH: str = "/ws"

# Reconnect policy
RECONNECT_BASE_MS: int = int(os.getenv("TT_RECONNECT_BASE_MS", "1000"))
RECONNECT_MAX_ATTEMPTS: int = int(os.getenv("TT_RECONNECT_MAX_ATTEMPTS", "5"))

# Logs
LOG_MAX: int = int(os.getenv("TT_LOG_MAX", "1000"))

# Web console
WEB_HOST: str = os.getenv("TT_WEB_HOST", "0.0.0.0")
WEB_PORT: int = int(os.getenv("TT_WEB_PORT", "5000"))
WEB_DEBUG: bool = bool(int(os.getenv("TT_WEB_DEBUG", "0")))

# LED matrix on the devices
GRID_SIZE: int = 8

# Training config ranges (inclusive)
DURATION_RANGE = (60, 3600)        # seconds
TARGET_COUNT_RANGE = (1, 100)
REACT_TIME_RANGE = (200, 5000)     # ms
BRIGHTNESS_RANGE = (0, 100)        # percent


def build_ws_url(host: str = SERVER_HOST, secure: bool = SERVER_SECURE) -> str:
    """Connection URL; the scheme mirrors the console's transport security."""
    scheme = "wss" if secure else "ws"
    return f"{scheme}://{host}{WS_PATH}"
