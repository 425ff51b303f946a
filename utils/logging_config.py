"""Process-wide logging setup."""

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging() -> None:
    """Configure the root logger from LOG_LEVEL, or DEBUG=true for debug output."""
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    if os.getenv("DEBUG", "").strip().lower() in ("1", "true", "yes"):
        level_name = "DEBUG"
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
