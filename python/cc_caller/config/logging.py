"""
Logging setup for the cc-caller server.

Environment Variables:
    CC_CALLER_LOG_LEVEL - Level for cc_caller loggers (DEBUG, INFO, WARNING, ERROR). Default: INFO
    CC_CALLER_TRANSPORT_LOG_LEVEL - Level for aiohttp/websockets loggers. Default: WARNING
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Library loggers that log every request or frame at INFO/DEBUG
TRANSPORT_LOGGERS = ("aiohttp.access", "aiohttp.server", "aiohttp.web", "websockets")


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def setup_logging(
    level: Optional[str] = None,
    transport_level: Optional[str] = None,
    stream=None,
) -> logging.Logger:
    """
    Configure the ``cc_caller`` logger tree.

    Every module logs to a ``cc_caller.<area>`` child logger, so one stdout
    handler on ``cc_caller`` covers the coordinator, server, client and push
    paths. Calling this again replaces the handler (used to switch to DEBUG).

    Args:
        level: Level for cc_caller loggers. Default from CC_CALLER_LOG_LEVEL or INFO.
        transport_level: Level for aiohttp/websockets loggers.
            Default from CC_CALLER_TRANSPORT_LOG_LEVEL or WARNING.
        stream: Output stream (stdout if omitted)

    Returns:
        The ``cc_caller`` logger.
    """
    app_level = _level(level or os.getenv("CC_CALLER_LOG_LEVEL"), logging.INFO)
    lib_level = _level(
        transport_level or os.getenv("CC_CALLER_TRANSPORT_LOG_LEVEL"), logging.WARNING
    )

    logger = logging.getLogger("cc_caller")
    logger.setLevel(app_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(lib_level)

    return logger
