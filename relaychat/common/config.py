"""
Runtime configuration for relaychat.

Values come from environment variables, optionally loaded from a .env file
in the working directory. They are read once at import time.

Environment Variables (.env):
    SERVER_HOST: Host to bind to / connect to (default: 127.0.0.1)
    SERVER_PORT: TCP port (default: 5000)
    MAX_FRAME_SIZE: Largest frame payload in bytes (default: 4 MiB)
    HANDSHAKE_TIMEOUT: Seconds allowed for key exchange, 0 disables (default: 30)
    LOG_LEVEL: Logging level name (default: INFO)
"""

import os
import logging
from typing import Optional
from dotenv import load_dotenv


# Load environment variables
load_dotenv()

SERVER_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("SERVER_PORT", "5000"))

# 4 MiB leaves room for a 1 MiB message plus IV and padding
MAX_FRAME_SIZE = int(os.getenv("MAX_FRAME_SIZE", str(4 * 1024 * 1024)))

HANDSHAKE_TIMEOUT = float(os.getenv("HANDSHAKE_TIMEOUT", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def handshake_timeout() -> Optional[float]:
    """Return the handshake timeout in seconds, or None when disabled."""
    if HANDSHAKE_TIMEOUT <= 0:
        return None
    return HANDSHAKE_TIMEOUT


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for an entry point."""
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
