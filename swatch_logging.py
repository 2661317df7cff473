# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Logging setup for Swatch using loguru.
Modules log through ``from loguru import logger``; this only installs the sink.
"""
import sys
from typing import Any, Optional, TextIO, Union

from loguru import logger

from swatch_config import config

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function} | {message}"


def configure_logging(level: Optional[str] = None, sink: Union[TextIO, Any] = sys.stderr) -> int:
    """
    Replace loguru's default handler with the Swatch format.

    Args:
        level: Minimum level; defaults to ``Config.LOG_LEVEL``.
        sink: Any loguru-compatible sink (stream, path, callable).

    Returns:
        The loguru handler id, usable with ``logger.remove``.
    """
    level = (level or config.LOG_LEVEL).upper()
    if not config.validate_log_level(level):
        raise ValueError(f"Unknown log level '{level}'")

    # Remove default handler
    logger.remove()
    return logger.add(sink, format=LOG_FORMAT, level=level, serialize=False)
