"""
Wire protocol for caller connections.

Every frame is a JSON envelope ``{"type", "payload", "timestamp"}``. Each
message type has exactly one payload dataclass; ``parse_message`` validates
a raw frame at the boundary and returns a typed ``Envelope`` or raises
``ProtocolError``. Payload keys are camelCase on the wire.
"""

import json
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class ProtocolError(ValueError):
    """Raised when a frame is not a valid caller message."""


class MessageType(str, Enum):
    """Message types exchanged over caller connections."""
    REGISTER = "register"
    INITIATE_CALL = "initiate_call"
    INCOMING_CALL = "incoming_call"
    CALL_ACCEPTED = "call_accepted"
    CALL_REJECTED = "call_rejected"
    CALL_STATUS = "call_status"
    USER_RESPONSE = "user_response"
    SEND_MESSAGE = "send_message"
    TTS_MESSAGE = "tts_message"
    HEARTBEAT = "heartbeat"


class CallStatus(str, Enum):
    """Call lifecycle states."""
    PENDING = "pending"
    RINGING = "ringing"
    CONNECTED = "connected"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no_answer"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.NO_ANSWER})


class Urgency(str, Enum):
    """Advisory priority of a call (presentation only)."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


# Field helpers

def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"'{key}' must be a non-empty string")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string")
    return value


def _optional_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"'{key}' must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ProtocolError(f"'{key}' must be a finite number")
    return int(value)


def _enum_value(enum_cls, data: Dict[str, Any], key: str, default=None):
    value = data.get(key, default)
    try:
        return enum_cls(value)
    except ValueError:
        raise ProtocolError(f"'{key}' has invalid value {value!r}") from None


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# Payloads

@dataclass
class RegisterPayload:
    user_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegisterPayload":
        return cls(user_id=_optional_str(data, "userId"))

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"userId": self.user_id})


@dataclass
class InitiateCallPayload:
    """A call request issued by the agent."""
    call_id: str
    message: str
    urgency: Urgency = Urgency.NORMAL
    requires_response: bool = True
    context: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InitiateCallPayload":
        requires_response = data.get("requiresResponse", True)
        if not isinstance(requires_response, bool):
            raise ProtocolError("'requiresResponse' must be a boolean")
        timestamp = _optional_int(data, "timestamp")
        return cls(
            call_id=_require_str(data, "callId"),
            message=_require_str(data, "message"),
            urgency=_enum_value(Urgency, data, "urgency", Urgency.NORMAL.value),
            requires_response=requires_response,
            context=_optional_str(data, "context"),
            timestamp=timestamp if timestamp is not None else now_ms(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "callId": self.call_id,
            "message": self.message,
            "urgency": self.urgency.value,
            "context": self.context,
            "requiresResponse": self.requires_response,
            "timestamp": self.timestamp,
        })


@dataclass
class IncomingCallPayload:
    call_id: str
    message: str
    urgency: Urgency = Urgency.NORMAL
    context: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IncomingCallPayload":
        return cls(
            call_id=_require_str(data, "callId"),
            message=_require_str(data, "message"),
            urgency=_enum_value(Urgency, data, "urgency", Urgency.NORMAL.value),
            context=_optional_str(data, "context"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "callId": self.call_id,
            "message": self.message,
            "urgency": self.urgency.value,
            "context": self.context,
        })


@dataclass
class CallIdPayload:
    """Payload of call_accepted and call_rejected."""
    call_id: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallIdPayload":
        return cls(call_id=_require_str(data, "callId"))

    def to_dict(self) -> Dict[str, Any]:
        return {"callId": self.call_id}


@dataclass
class CallStatusPayload:
    """Status update for the agent; also the agent-side call result."""
    call_id: str
    status: CallStatus
    error: Optional[str] = None
    duration: Optional[int] = None
    user_response: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallStatusPayload":
        return cls(
            call_id=_require_str(data, "callId"),
            status=_enum_value(CallStatus, data, "status"),
            error=_optional_str(data, "error"),
            duration=_optional_int(data, "duration"),
            user_response=_optional_str(data, "userResponse"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "callId": self.call_id,
            "status": self.status.value,
            "error": self.error,
            "duration": self.duration,
            "userResponse": self.user_response,
        })


@dataclass
class UserResponsePayload:
    call_id: str
    user_message: str
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserResponsePayload":
        user_message = data.get("userMessage")
        if not isinstance(user_message, str):
            raise ProtocolError("'userMessage' must be a string")
        timestamp = _optional_int(data, "timestamp")
        return cls(
            call_id=_require_str(data, "callId"),
            user_message=user_message,
            timestamp=timestamp if timestamp is not None else now_ms(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "callId": self.call_id,
            "userMessage": self.user_message,
            "timestamp": self.timestamp,
        }


@dataclass
class SendMessagePayload:
    call_id: str
    message: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SendMessagePayload":
        return cls(call_id=_require_str(data, "callId"), message=_require_str(data, "message"))

    def to_dict(self) -> Dict[str, Any]:
        return {"callId": self.call_id, "message": self.message}


@dataclass
class TtsMessagePayload:
    call_id: str
    message: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TtsMessagePayload":
        return cls(call_id=_require_str(data, "callId"), message=_require_str(data, "message"))

    def to_dict(self) -> Dict[str, Any]:
        return {"callId": self.call_id, "message": self.message}


@dataclass
class HeartbeatPayload:

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeartbeatPayload":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {}


Payload = Union[
    RegisterPayload,
    InitiateCallPayload,
    IncomingCallPayload,
    CallIdPayload,
    CallStatusPayload,
    UserResponsePayload,
    SendMessagePayload,
    TtsMessagePayload,
    HeartbeatPayload,
]

PAYLOAD_TYPES = {
    MessageType.REGISTER: RegisterPayload,
    MessageType.INITIATE_CALL: InitiateCallPayload,
    MessageType.INCOMING_CALL: IncomingCallPayload,
    MessageType.CALL_ACCEPTED: CallIdPayload,
    MessageType.CALL_REJECTED: CallIdPayload,
    MessageType.CALL_STATUS: CallStatusPayload,
    MessageType.USER_RESPONSE: UserResponsePayload,
    MessageType.SEND_MESSAGE: SendMessagePayload,
    MessageType.TTS_MESSAGE: TtsMessagePayload,
    MessageType.HEARTBEAT: HeartbeatPayload,
}

# Agent-side names for the same shapes
CallRequest = InitiateCallPayload
CallResult = CallStatusPayload
CallResponse = UserResponsePayload


@dataclass
class Envelope:
    """A typed caller message."""
    type: MessageType
    payload: Payload
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self):
        expected = PAYLOAD_TYPES[self.type]
        if not isinstance(self.payload, expected):
            raise ProtocolError(
                f"{self.type.value} requires {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type.value,
            "payload": self.payload.to_dict(),
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def heartbeat(cls) -> "Envelope":
        return cls(MessageType.HEARTBEAT, HeartbeatPayload())


def parse_message(raw: Union[str, bytes, Dict[str, Any]]) -> Envelope:
    """
    Validate a raw frame and build its envelope.

    Args:
        raw: JSON text/bytes, or an already-decoded dict

    Returns:
        Typed Envelope

    Raises:
        ProtocolError: malformed JSON, unknown type, or bad payload fields
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as e:
            raise ProtocolError(f"invalid JSON: {e}") from None
    else:
        data = raw

    if not isinstance(data, dict):
        raise ProtocolError("message must be a JSON object")

    try:
        message_type = MessageType(data.get("type"))
    except ValueError:
        raise ProtocolError(f"unknown message type {data.get('type')!r}") from None

    payload_data = data.get("payload", {})
    if payload_data is None:
        payload_data = {}
    if not isinstance(payload_data, dict):
        raise ProtocolError("'payload' must be an object")

    timestamp = _optional_int(data, "timestamp")
    payload = PAYLOAD_TYPES[message_type].from_dict(payload_data)

    return Envelope(
        type=message_type,
        payload=payload,
        timestamp=timestamp if timestamp is not None else now_ms(),
    )
