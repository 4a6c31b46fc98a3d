"""
Call state and storage.

A ``Call`` owns its lifecycle: transitions are methods that check the
current status, and once a terminal status is reached the object is sealed
(``end_time`` set once, further assignment raises ``CallStateError``).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from ..protocol import (
    CallStatus,
    CallStatusPayload,
    IncomingCallPayload,
    InitiateCallPayload,
    Urgency,
    now_ms,
)

logger = logging.getLogger("cc_caller.call_store")


class CallStateError(Exception):
    """Raised on an invalid transition or a write to a finished call."""


@dataclass
class Call:
    """One initiate -> notify -> respond round trip."""
    call_id: str
    message: str
    urgency: Urgency = Urgency.NORMAL
    context: Optional[str] = None
    requires_response: bool = True
    status: CallStatus = CallStatus.PENDING
    start_time: int = field(default_factory=now_ms)
    connected_time: Optional[int] = None
    end_time: Optional[int] = None
    user_response: Optional[str] = None
    error: Optional[str] = None

    _timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False, compare=False)
    _sealed: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name, value):
        if self.__dict__.get("_sealed") and name != "_timer":
            raise CallStateError(f"Call {self.call_id} is {self.status.value}; cannot set {name}")
        super().__setattr__(name, value)

    @classmethod
    def from_request(cls, request: InitiateCallPayload) -> "Call":
        return cls(
            call_id=request.call_id,
            message=request.message,
            urgency=request.urgency,
            context=request.context,
            requires_response=request.requires_response,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration(self) -> Optional[int]:
        """Milliseconds from start to end, once finished."""
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    # Timer

    def arm_timer(self, handle: asyncio.TimerHandle) -> None:
        self.cancel_timer()
        self._timer = handle

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # Transitions

    def _require(self, *allowed: CallStatus) -> None:
        if self.status not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise CallStateError(
                f"Call {self.call_id} is {self.status.value}, expected one of: {names}"
            )

    def ring(self) -> None:
        self._require(CallStatus.PENDING)
        self.status = CallStatus.RINGING

    def connect(self) -> None:
        self._require(CallStatus.RINGING)
        self.cancel_timer()
        self.status = CallStatus.CONNECTED
        self.connected_time = now_ms()

    def complete(self, user_response: str) -> None:
        # Answering straight from ringing counts as accepting the call.
        self._require(CallStatus.RINGING, CallStatus.CONNECTED)
        if self.connected_time is None:
            self.connected_time = now_ms()
        self.user_response = user_response
        self._finish(CallStatus.COMPLETED)

    def fail(self, error: str) -> None:
        self._require(CallStatus.PENDING, CallStatus.RINGING, CallStatus.CONNECTED)
        self.error = error
        self._finish(CallStatus.FAILED)

    def expire(self, error: Optional[str] = None) -> None:
        self._require(CallStatus.RINGING)
        self.error = error
        self._finish(CallStatus.NO_ANSWER)

    def _finish(self, status: CallStatus) -> None:
        self.cancel_timer()
        self.status = status
        self.end_time = now_ms()
        self._sealed = True

    # Messages

    def to_status(self) -> CallStatusPayload:
        return CallStatusPayload(
            call_id=self.call_id,
            status=self.status,
            error=self.error,
            duration=self.duration,
            user_response=self.user_response,
        )

    def to_incoming(self) -> IncomingCallPayload:
        return IncomingCallPayload(
            call_id=self.call_id,
            message=self.message,
            urgency=self.urgency,
            context=self.context,
        )

    def to_dict(self) -> dict:
        return {
            "callId": self.call_id,
            "message": self.message,
            "urgency": self.urgency.value,
            "context": self.context,
            "requiresResponse": self.requires_response,
            "status": self.status.value,
            "startTime": self.start_time,
            "connectedTime": self.connected_time,
            "endTime": self.end_time,
            "userResponse": self.user_response,
            "error": self.error,
        }


class CallStore:
    """
    Calls keyed by call id, with bounded retention of finished calls.

    Live calls are never pruned. Finished calls are dropped once they are
    older than ``retention_sec`` or when more than ``max_retained`` of them
    are held (oldest first).
    """

    def __init__(self, retention_sec: float = 3600.0, max_retained: int = 1000):
        self.retention_sec = retention_sec
        self.max_retained = max_retained
        self._calls: Dict[str, Call] = {}

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def __iter__(self) -> Iterator[Call]:
        return iter(list(self._calls.values()))

    def add(self, call: Call) -> None:
        if call.call_id in self._calls:
            raise CallStateError(f"Call {call.call_id} already exists")
        self._calls[call.call_id] = call

    def get(self, call_id: str) -> Optional[Call]:
        return self._calls.get(call_id)

    def with_status(self, status: CallStatus) -> List[Call]:
        return [c for c in self._calls.values() if c.status == status]

    def prune(self, now: Optional[int] = None) -> int:
        """
        Drop expired finished calls.

        Returns:
            Number of calls removed
        """
        if now is None:
            now = now_ms()
        cutoff = now - int(self.retention_sec * 1000)

        finished = sorted(
            (c for c in self._calls.values() if c.is_terminal),
            key=lambda c: c.end_time,
        )
        expired = [c for c in finished if c.end_time < cutoff]
        kept = finished[len(expired):]
        overflow = max(0, len(kept) - self.max_retained)
        doomed = expired + kept[:overflow]

        for call in doomed:
            del self._calls[call.call_id]

        if doomed:
            logger.debug(f"Pruned {len(doomed)} finished calls")
        return len(doomed)

    def cancel_timers(self) -> None:
        for call in self._calls.values():
            call.cancel_timer()
