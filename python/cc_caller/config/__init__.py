"""Configuration module."""
from .settings import (
    CALL_TIMEOUT_SECONDS,
    RING_TIMEOUT_SECONDS,
    CallerConfig,
    get_config,
    reset_config,
)
from .logging import setup_logging

__all__ = [
    "CALL_TIMEOUT_SECONDS",
    "RING_TIMEOUT_SECONDS",
    "CallerConfig",
    "get_config",
    "reset_config",
    "setup_logging",
]
