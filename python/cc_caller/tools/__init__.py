"""Agent tool surface."""
from .call_tools import (
    ToolResult,
    call_user,
    end_call,
    send_message_in_call,
    wait_for_reply,
)

__all__ = [
    "ToolResult",
    "call_user",
    "end_call",
    "send_message_in_call",
    "wait_for_reply",
]
