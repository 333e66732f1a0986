"""
Apply log level from env.

Single log level for the listener, decoder and consumer loggers.
"""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_level(raw: str) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    raw = str(raw).strip().upper()
    if raw.isdigit():
        return int(raw)
    level = getattr(logging, raw, logging.INFO)
    return level if isinstance(level, int) else logging.INFO


def level_from_env() -> int:
    """Resolve log level: DISCOVERY_LOG_LEVEL env if set, else INFO."""
    raw = os.environ.get("DISCOVERY_LOG_LEVEL", "").strip()
    return _parse_level(raw) if raw else logging.INFO


def apply_log_level(level: int) -> None:
    """Set root logger level so all loggers use this level."""
    logging.getLogger().setLevel(level)


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    apply_log_level(level_from_env())
