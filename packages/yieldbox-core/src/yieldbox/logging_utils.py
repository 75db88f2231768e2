# logging_utils.py
from __future__ import annotations

import logging
import os
from typing import Optional

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PACKAGE_LOGGER = "yieldbox"

_LOGGING_CONFIGURED = False


def _ensure_console(logger: logging.Logger, fmt: str = CONSOLE_FORMAT) -> None:
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setLevel(logging.DEBUG)
        ch.setFormatter(logging.Formatter(fmt))
        logger.addHandler(ch)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Send yieldbox logs to the console (once). Level from arg or LOG_LEVEL."""
    global _LOGGING_CONFIGURED

    logger = logging.getLogger(PACKAGE_LOGGER)
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger.setLevel(logging.getLevelName(level_name))
    if _LOGGING_CONFIGURED:
        return logger

    _ensure_console(logger)
    # python-binance / urllib3 stay quiet unless asked for
    for noisy in ("urllib3", "binance", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True
    return logger
