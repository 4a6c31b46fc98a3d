"""
Tool surface for the agent.

Each tool validates its arguments, talks to the caller server through a
CallerClient and returns a ToolResult: a short text for the agent plus a
structured dict. Tools never raise; every failure becomes a result with
``success: False``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import uuid4

from ..client import CallerClient, get_caller_client
from ..protocol import CallRequest, CallStatus, Urgency

logger = logging.getLogger("cc_caller.tools")

MESSAGE_MAX_CHARS = 2000
CONTEXT_MAX_CHARS = 500
FAREWELL_MAX_CHARS = 500
REPLY_TIMEOUT_MIN = 5
REPLY_TIMEOUT_MAX = 300
FAREWELL_GRACE_SECONDS = 2.0


@dataclass
class ToolResult:
    """Outcome of a tool invocation."""
    text: str
    structured: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.structured.get("success"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": [{"type": "text", "text": self.text}],
            "structuredContent": self.structured,
        }


def _invalid(call_id: Optional[str], error: str) -> ToolResult:
    return ToolResult(
        text=f"Invalid arguments: {error}",
        structured={"success": False, "call_id": call_id, "error": error},
    )


def _check_message(message: Any, limit: int = MESSAGE_MAX_CHARS, name: str = "message") -> Optional[str]:
    if not isinstance(message, str) or not message:
        return f"{name} cannot be empty"
    if len(message) > limit:
        return f"{name} too long, max {limit} characters"
    return None


async def call_user(
    message: str,
    urgency: str = Urgency.NORMAL.value,
    context: Optional[str] = None,
    wait_for_response: bool = True,
    client: Optional[CallerClient] = None,
) -> ToolResult:
    """
    Call the operator and wait for the outcome.

    Args:
        message: What to say to the operator (spoken by the operator's client)
        urgency: low, normal, high or critical
        context: Optional text shown alongside the call
        wait_for_response: Whether the operator is expected to answer
        client: Caller client (default client if omitted)
    """
    call_id = str(uuid4())

    error = _check_message(message)
    if error is None and context is not None and len(context) > CONTEXT_MAX_CHARS:
        error = f"context too long, max {CONTEXT_MAX_CHARS} characters"
    try:
        level = Urgency(urgency)
    except ValueError:
        level = None
        error = error or f"urgency must be one of: {', '.join(u.value for u in Urgency)}"
    if error:
        return _invalid(call_id, error)

    client = client or get_caller_client()
    logger.info(f"[call_user] Initiating call {call_id} with urgency: {level.value}")

    result = await client.initiate_call(CallRequest(
        call_id=call_id,
        message=message,
        urgency=level,
        context=context,
        requires_response=wait_for_response,
    ))

    if result.status == CallStatus.COMPLETED:
        duration_seconds = round(result.duration / 1000) if result.duration is not None else None
        text = "Call completed successfully."
        if result.user_response:
            text += f'\n\nUser said: "{result.user_response}"'
        if duration_seconds is not None:
            text += f"\n\nCall duration: {duration_seconds} seconds"
        return ToolResult(text=text, structured={
            "success": True,
            "call_id": call_id,
            "status": result.status.value,
            "user_response": result.user_response,
            "duration_seconds": duration_seconds,
        })

    if result.status == CallStatus.NO_ANSWER:
        return ToolResult(
            text=(
                "Call not answered. The user may be away or busy.\n\n"
                "You can try again later or continue working independently."
            ),
            structured={
                "success": False,
                "call_id": call_id,
                "status": result.status.value,
                "error": "User did not answer the call",
            },
        )

    error = result.error or "Call failed"
    return ToolResult(
        text=f"Call failed: {error}\n\nPlease check that the caller server is running.",
        structured={
            "success": False,
            "call_id": call_id,
            "status": result.status.value,
            "error": error,
        },
    )


async def send_message_in_call(
    call_id: str,
    message: str,
    client: Optional[CallerClient] = None,
) -> ToolResult:
    """Speak an additional message during a connected call."""
    error = _check_message(call_id, name="call_id") or _check_message(message)
    if error:
        return _invalid(call_id, error)

    client = client or get_caller_client()
    if not await client.send_text(call_id, message):
        return ToolResult(
            text="Failed to send message: caller server not reachable",
            structured={"success": False, "call_id": call_id, "error": "caller server not reachable"},
        )

    return ToolResult(
        text=f"Message sent to user in call {call_id}",
        structured={"success": True, "call_id": call_id, "message_sent": True},
    )


async def wait_for_reply(
    call_id: str,
    timeout_seconds: int = 60,
    client: Optional[CallerClient] = None,
) -> ToolResult:
    """Wait for the operator's next reply on a call."""
    error = _check_message(call_id, name="call_id")
    if error is None and (
        isinstance(timeout_seconds, bool)
        or not isinstance(timeout_seconds, int)
        or not REPLY_TIMEOUT_MIN <= timeout_seconds <= REPLY_TIMEOUT_MAX
    ):
        error = f"timeout_seconds must be an integer between {REPLY_TIMEOUT_MIN} and {REPLY_TIMEOUT_MAX}"
    if error:
        return _invalid(call_id, error)

    client = client or get_caller_client()
    logger.info(f"[wait_for_reply] Waiting {timeout_seconds}s for response on call {call_id}")
    response = await client.wait_for_response(call_id, timeout=float(timeout_seconds))

    if response is None:
        return ToolResult(
            text=(
                f"No response received within {timeout_seconds} seconds.\n\n"
                "The user may be thinking or away. You can wait again or proceed "
                "with your best judgment."
            ),
            structured={
                "success": False,
                "call_id": call_id,
                "timeout": True,
                "waited_seconds": timeout_seconds,
            },
        )

    return ToolResult(
        text=f'User response received:\n\n"{response.user_message}"',
        structured={
            "success": True,
            "call_id": call_id,
            "user_response": response.user_message,
            "received_at": response.timestamp,
        },
    )


async def end_call(
    call_id: str,
    farewell_message: Optional[str] = None,
    client: Optional[CallerClient] = None,
    grace_seconds: float = FAREWELL_GRACE_SECONDS,
) -> ToolResult:
    """
    End a call, optionally speaking a farewell first.

    The server has no hang-up message; ending only stops the agent from
    using the call. The grace period lets the farewell be spoken.
    """
    error = _check_message(call_id, name="call_id")
    if error is None and farewell_message is not None:
        error = _check_message(farewell_message, FAREWELL_MAX_CHARS, "farewell_message")
    if error:
        return _invalid(call_id, error)

    delivered = False
    if farewell_message:
        client = client or get_caller_client()
        delivered = await client.send_text(call_id, farewell_message)
        if delivered and grace_seconds > 0:
            await asyncio.sleep(grace_seconds)

    text = f"Call {call_id} ended."
    if delivered:
        text += "\n\nFarewell message delivered."
    elif farewell_message:
        text += "\n\nFarewell message could not be delivered."
    return ToolResult(
        text=text,
        structured={
            "success": True,
            "call_id": call_id,
            "ended": True,
            "farewell_delivered": delivered,
        },
    )
