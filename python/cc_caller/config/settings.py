"""
Caller configuration with environment variable support.

Environment Variables:
    CC_CALLER_HOST - Server bind host (default: 0.0.0.0)
    CC_CALLER_PORT - Server port for HTTP and WebSocket (default: 3001)
    CC_CALLER_RING_TIMEOUT - Seconds a call may ring before no_answer (default: 60)
    CC_CALLER_CALL_TIMEOUT - Client-side safety timeout in seconds (default: 120)
    CC_CALLER_WS_URL - WebSocket URL used by the agent-side client
    CC_CALLER_AGENT_USER_ID - Register sentinel that marks the agent role
    VAPID_PUBLIC_KEY, VAPID_PRIVATE_KEY, VAPID_SUBJECT - Web Push credentials
    CC_CALLER_DEBUG - Enable debug logging (true/false)
"""

import os
from dataclasses import dataclass, field
from typing import Optional

# Server side: how long an unanswered call keeps ringing.
RING_TIMEOUT_SECONDS = 60.0

# Client side: independent safety net in case the server's no_answer
# status is lost in transit. Must stay larger than RING_TIMEOUT_SECONDS.
CALL_TIMEOUT_SECONDS = 120.0

DEFAULT_AGENT_USER_ID = "claude-code"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass
class CallerConfig:
    """Caller configuration."""

    # Server
    host: str = field(default_factory=lambda: os.getenv("CC_CALLER_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("CC_CALLER_PORT", "3001")))
    static_dir: Optional[str] = field(
        default_factory=lambda: _env_optional("CC_CALLER_STATIC_DIR")
    )

    # Call lifecycle
    ring_timeout: float = field(
        default_factory=lambda: float(
            os.getenv("CC_CALLER_RING_TIMEOUT", str(RING_TIMEOUT_SECONDS))
        )
    )
    call_retention_sec: float = field(
        default_factory=lambda: float(os.getenv("CC_CALLER_CALL_RETENTION_SEC", "3600"))
    )
    max_retained_calls: int = field(
        default_factory=lambda: int(os.getenv("CC_CALLER_MAX_RETAINED_CALLS", "1000"))
    )
    agent_user_id: str = field(
        default_factory=lambda: os.getenv("CC_CALLER_AGENT_USER_ID", DEFAULT_AGENT_USER_ID)
    )

    # Agent-side client
    ws_url: str = field(
        default_factory=lambda: os.getenv("CC_CALLER_WS_URL", "ws://localhost:3001/ws")
    )
    call_timeout: float = field(
        default_factory=lambda: float(
            os.getenv("CC_CALLER_CALL_TIMEOUT", str(CALL_TIMEOUT_SECONDS))
        )
    )
    reconnect_base: float = field(
        default_factory=lambda: float(os.getenv("CC_CALLER_RECONNECT_BASE", "1.0"))
    )
    reconnect_max: float = field(
        default_factory=lambda: float(os.getenv("CC_CALLER_RECONNECT_MAX", "30.0"))
    )
    max_reconnect_attempts: int = field(
        default_factory=lambda: int(os.getenv("CC_CALLER_MAX_RECONNECT_ATTEMPTS", "5"))
    )
    heartbeat_interval: float = field(
        default_factory=lambda: float(os.getenv("CC_CALLER_HEARTBEAT_INTERVAL", "25"))
    )

    # Web Push
    vapid_public_key: Optional[str] = field(
        default_factory=lambda: _env_optional("VAPID_PUBLIC_KEY")
    )
    vapid_private_key: Optional[str] = field(
        default_factory=lambda: _env_optional("VAPID_PRIVATE_KEY")
    )
    vapid_subject: Optional[str] = field(
        default_factory=lambda: _env_optional("VAPID_SUBJECT")
    )

    # Metrics
    metrics_enabled: bool = field(
        default_factory=lambda: _env_bool("CC_CALLER_METRICS_ENABLED")
    )
    metrics_port: int = field(
        default_factory=lambda: int(os.getenv("CC_CALLER_METRICS_PORT", "9090"))
    )

    # Debug
    debug: bool = field(default_factory=lambda: _env_bool("CC_CALLER_DEBUG"))

    def __post_init__(self):
        """Validate timeouts after initialization."""
        import logging

        logger = logging.getLogger("cc_caller.config")

        if self.call_timeout <= self.ring_timeout:
            logger.warning(
                f"Client call timeout ({self.call_timeout}s) is not larger than the "
                f"ring timeout ({self.ring_timeout}s); calls may be reported as "
                f"no_answer before the server gives up."
            )

    @property
    def push_configured(self) -> bool:
        """True when all VAPID credentials are present."""
        return bool(self.vapid_public_key and self.vapid_private_key and self.vapid_subject)


# Singleton config instance
_config: Optional[CallerConfig] = None


def get_config() -> CallerConfig:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = CallerConfig()
    return _config


def reset_config():
    """Reset the global config (useful for testing)."""
    global _config
    _config = None
