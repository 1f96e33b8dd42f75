# =============================================
# File: astro_ai/utils/logging.py
# Purpose: Logging configuration (loguru sinks)
# =============================================
from __future__ import annotations

import os
import sys

from loguru import logger

_configured = False


def configure_logging() -> None:
    """stderr at LOG_LEVEL + rotating file sink at LOG_FILE. Idempotent."""
    global _configured
    if _configured:
        return
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.remove()
    logger.add(sys.stderr, level=level)
    log_file = os.getenv("LOG_FILE", "logs/app.log")
    if log_file:
        logger.add(log_file, rotation="10 MB", level=level)
    _configured = True
