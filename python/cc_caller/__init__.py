"""
cc-caller - relay short voice "calls" between a coding agent and a human operator.

Components:
- Call coordinator: call lifecycle, operator fan-out, ringing timeout
- WebSocket/HTTP server for agent and operator clients
- Web Push wake-up for operators whose page is asleep
- Agent-side client that correlates requests and replies by call id

Usage:
    python -m cc_caller

Environment Variables:
    CC_CALLER_PORT - Server port (default: 3001)
    CC_CALLER_WS_URL - Server URL used by the agent-side client
    VAPID_PUBLIC_KEY, VAPID_PRIVATE_KEY, VAPID_SUBJECT - Web Push credentials
"""

__version__ = "1.0.0"

from .config import CallerConfig, get_config
from .core import CallCoordinator
from .client import CallerClient

__all__ = [
    "CallerConfig",
    "get_config",
    "CallCoordinator",
    "CallerClient",
]
