"""
Call Coordinator.

Drives the call lifecycle between the single agent connection and the
operator connections:

    pending -> ringing -> connected -> completed
    ringing -> failed (rejected) | no_answer (timeout)
    pending -> failed (no operator reachable)

All methods run on the event loop thread and never await, so each
operation applies its state change and queues its messages atomically.
Operations on unknown or out-of-state calls are logged no-ops.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

from ..config import CallerConfig, get_config
from ..protocol import (
    CallStatus,
    Envelope,
    InitiateCallPayload,
    MessageType,
    TtsMessagePayload,
    UserResponsePayload,
)
from ..push import incoming_call_payload, tts_message_payload
from .call_store import Call, CallStore
from .registry import Connection, Role, SessionRegistry
from .task_registry import TaskRegistry

if TYPE_CHECKING:
    from ..metrics import MetricsCollector
    from ..push import PushNotifier

logger = logging.getLogger("cc_caller.coordinator")

NO_OPERATOR_ERROR = "no operator clients connected"
REJECTED_ERROR = "rejected by operator"
NO_ANSWER_ERROR = "no answer from operator"


class CallCoordinator:
    """Orchestrates calls across the registry and the call store."""

    def __init__(
        self,
        config: Optional[CallerConfig] = None,
        registry: Optional[SessionRegistry] = None,
        store: Optional[CallStore] = None,
        push: Optional["PushNotifier"] = None,
        metrics: Optional["MetricsCollector"] = None,
        tasks: Optional[TaskRegistry] = None,
    ):
        self.config = config or get_config()
        self.registry = registry or SessionRegistry()
        self.store = store or CallStore(
            retention_sec=self.config.call_retention_sec,
            max_retained=self.config.max_retained_calls,
        )
        self.push = push
        self.metrics = metrics
        self.tasks = tasks or TaskRegistry()
        self.ring_timeout = self.config.ring_timeout
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info(f"Call coordinator started (ring timeout {self.ring_timeout}s)")

    async def stop(self) -> None:
        """Cancel armed timers and background tasks."""
        self._running = False
        self.store.cancel_timers()
        await self.tasks.shutdown()
        logger.info("Call coordinator stopped")

    # Connections

    def attach(self, connection: Connection) -> None:
        """Start delivering queued messages for a new transport session."""
        connection.start(self.tasks)

    async def detach(self, connection: Connection) -> None:
        """Forget a closed connection. Calls in flight are left untouched."""
        self.registry.remove(connection)
        self._update_connection_metrics()
        await connection.stop()

    def register(
        self,
        connection: Connection,
        role: Role,
        operator_id: Optional[str] = None,
    ) -> None:
        """
        Register a connection and bring a late operator up to date.

        An operator joining while calls are ringing gets an incoming_call
        for each of them right away.
        """
        self.registry.register(connection, role, operator_id)
        self._update_connection_metrics()

        if role == Role.OPERATOR:
            for call in self.store.with_status(CallStatus.RINGING):
                logger.info(f"Replaying ringing call {call.call_id} to {connection!r}")
                connection.send(Envelope(MessageType.INCOMING_CALL, call.to_incoming()))

    # Call lifecycle

    def initiate(self, request: InitiateCallPayload) -> Optional[Call]:
        """
        Create a call and alert operators.

        Returns:
            The new call, or None if the call id is already tracked
        """
        self.store.prune()
        if request.call_id in self.store:
            logger.warning(f"Duplicate call id {request.call_id}, ignoring initiate")
            return None

        call = Call.from_request(request)
        self.store.add(call)
        logger.info(f"Initiating call {call.call_id} (urgency={call.urgency.value})")

        push_ready = self.push is not None and self.push.can_deliver

        if self.registry.operator_count == 0 and not push_ready:
            logger.info(f"No operator clients connected for call {call.call_id}")
            call.fail(NO_OPERATOR_ERROR)
            self._on_finished(call, was_live=False)
            return call

        call.ring()
        if self.metrics:
            self.metrics.call_started()

        self._broadcast(Envelope(MessageType.INCOMING_CALL, call.to_incoming()))
        if push_ready:
            self._push(call.call_id, incoming_call_payload(call))

        loop = asyncio.get_running_loop()
        call.arm_timer(loop.call_later(self.ring_timeout, self._on_ring_timeout, call.call_id))
        return call

    def accept(self, call_id: str) -> None:
        call = self._lookup(call_id, "accept")
        if call is None:
            return
        if call.status != CallStatus.RINGING:
            logger.info(f"Ignoring accept for call {call_id} in status {call.status.value}")
            return

        call.connect()
        logger.info(f"Call {call_id} accepted")
        self._send_status(call)

    def reject(self, call_id: str) -> None:
        call = self._lookup(call_id, "reject")
        if call is None:
            return
        if call.status != CallStatus.RINGING:
            logger.info(f"Ignoring reject for call {call_id} in status {call.status.value}")
            return

        call.fail(REJECTED_ERROR)
        logger.info(f"Call {call_id} rejected")
        self._on_finished(call)

    def respond(self, call_id: str, text: str) -> None:
        """
        Complete a call with the operator's reply.

        The agent receives user_response first, then call_status(completed).
        """
        call = self._lookup(call_id, "respond")
        if call is None:
            return
        if call.status not in (CallStatus.RINGING, CallStatus.CONNECTED):
            logger.info(f"Ignoring response for call {call_id} in status {call.status.value}")
            return

        call.complete(text)
        logger.info(f"User response for call {call_id}: {text[:80]!r}")
        self._send_to_agent(Envelope(
            MessageType.USER_RESPONSE,
            UserResponsePayload(call_id=call_id, user_message=text),
        ))
        self._on_finished(call)

    def send_follow_up(self, call_id: str, text: str) -> None:
        """Speak an extra message to operators during a connected call."""
        call = self._lookup(call_id, "send_message")
        if call is None:
            return
        if call.status != CallStatus.CONNECTED:
            logger.info(f"Cannot send message - call {call_id} not connected ({call.status.value})")
            return

        self._broadcast(Envelope(
            MessageType.TTS_MESSAGE,
            TtsMessagePayload(call_id=call_id, message=text),
        ))
        if self.push is not None and self.push.can_deliver:
            self._push(call_id, tts_message_payload(call_id, text))

    def _on_ring_timeout(self, call_id: str) -> None:
        call = self.store.get(call_id)
        # Accept/reject may have won the race, or the call was pruned.
        if call is None or call.status != CallStatus.RINGING:
            return

        call.expire(NO_ANSWER_ERROR)
        logger.info(f"Call {call_id} not answered within {self.ring_timeout}s")
        self._on_finished(call)

    # Inbound messages

    def handle_message(self, connection: Connection, envelope: Envelope) -> None:
        """Dispatch a validated inbound message."""
        payload: Any = envelope.payload
        message_type = envelope.type
        logger.debug(f"Received {message_type.value} from {connection!r}")

        if message_type == MessageType.HEARTBEAT:
            self.registry.touch_heartbeat(connection)
            connection.send(Envelope.heartbeat())
        elif message_type == MessageType.REGISTER:
            if payload.user_id == self.config.agent_user_id:
                self.register(connection, Role.AGENT)
            else:
                self.register(connection, Role.OPERATOR, payload.user_id)
        elif message_type == MessageType.INITIATE_CALL:
            self.initiate(payload)
        elif message_type == MessageType.CALL_ACCEPTED:
            self.accept(payload.call_id)
        elif message_type == MessageType.CALL_REJECTED:
            self.reject(payload.call_id)
        elif message_type == MessageType.USER_RESPONSE:
            self.respond(payload.call_id, payload.user_message)
        elif message_type == MessageType.SEND_MESSAGE:
            self.send_follow_up(payload.call_id, payload.message)
        else:
            logger.warning(f"Unexpected {message_type.value} from {connection!r}, dropped")

    # Queries

    def get_call(self, call_id: str) -> Optional[Call]:
        return self.store.get(call_id)

    def stats(self) -> Dict[str, Any]:
        """Counts for the status endpoint."""
        return {"activeCalls": len(self.store), **self.registry.stats()}

    # Helpers

    def _lookup(self, call_id: str, action: str) -> Optional[Call]:
        call = self.store.get(call_id)
        if call is None:
            logger.warning(f"Call {call_id} not found for {action}")
        return call

    def _on_finished(self, call: Call, was_live: bool = True) -> None:
        logger.info(f"Call {call.call_id} status updated to {call.status.value}")
        self._send_status(call)
        if self.metrics:
            self.metrics.call_ended(call.status.value, call.duration, was_live=was_live)

    def _send_status(self, call: Call) -> None:
        self._send_to_agent(Envelope(MessageType.CALL_STATUS, call.to_status()))

    def _send_to_agent(self, envelope: Envelope) -> bool:
        agent = self.registry.agent
        if agent is None:
            logger.debug(f"No agent connection, dropping {envelope.type.value}")
            return False
        return agent.send(envelope)

    def _broadcast(self, envelope: Envelope) -> int:
        sent = 0
        for connection in self.registry.operators:
            if connection.send(envelope):
                sent += 1
        logger.debug(f"Broadcast {envelope.type.value} to {sent} operator(s)")
        return sent

    def _push(self, call_id: str, payload: Dict[str, Any]) -> None:
        self.tasks.register(f"push:{call_id}", self.push.notify(payload))

    def _update_connection_metrics(self) -> None:
        if self.metrics:
            self.metrics.update_connections(
                agents=1 if self.registry.agent is not None else 0,
                operators=self.registry.operator_count,
            )
