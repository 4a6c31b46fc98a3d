"""Wire protocol module."""
from .messages import (
    TERMINAL_STATUSES,
    CallIdPayload,
    CallRequest,
    CallResponse,
    CallResult,
    CallStatus,
    CallStatusPayload,
    Envelope,
    HeartbeatPayload,
    IncomingCallPayload,
    InitiateCallPayload,
    MessageType,
    ProtocolError,
    RegisterPayload,
    SendMessagePayload,
    TtsMessagePayload,
    Urgency,
    UserResponsePayload,
    now_ms,
    parse_message,
)

__all__ = [
    "TERMINAL_STATUSES",
    "CallIdPayload",
    "CallRequest",
    "CallResponse",
    "CallResult",
    "CallStatus",
    "CallStatusPayload",
    "Envelope",
    "HeartbeatPayload",
    "IncomingCallPayload",
    "InitiateCallPayload",
    "MessageType",
    "ProtocolError",
    "RegisterPayload",
    "SendMessagePayload",
    "TtsMessagePayload",
    "Urgency",
    "UserResponsePayload",
    "now_ms",
    "parse_message",
]
