"""
Session registry for live caller connections.

Each accepted WebSocket becomes a ``Connection``. Outbound messages go through
a per-connection queue drained by one writer task, so every connection sees
its messages in send order while callers never await the network.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from uuid import uuid4

from ..protocol import Envelope, now_ms

if TYPE_CHECKING:
    from .task_registry import TaskRegistry

logger = logging.getLogger("cc_caller.registry")


class Role(str, Enum):
    """Connection roles."""
    AGENT = "agent"
    OPERATOR = "operator"


class Connection:
    """
    Handle for one transport session.

    The channel is any object exposing ``closed`` and an awaitable
    ``send_str(text)`` (aiohttp's WebSocketResponse in production).
    """

    def __init__(self, channel: Any):
        self.channel = channel
        self.connection_id = uuid4().hex[:8]
        self.role: Optional[Role] = None
        self.operator_id: Optional[str] = None
        self.connected_at = now_ms()
        self.last_heartbeat_at = self.connected_at

        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._sent_count = 0

    def __repr__(self) -> str:
        role = self.role.value if self.role else "unregistered"
        return f"<Connection {self.connection_id} {role}>"

    @property
    def is_open(self) -> bool:
        return not getattr(self.channel, "closed", True)

    @property
    def sent_count(self) -> int:
        return self._sent_count

    def send(self, envelope: Envelope) -> bool:
        """
        Queue a message for this connection.

        Returns:
            False if the channel is not open (message skipped)
        """
        if not self.is_open:
            logger.debug(f"Skipping {envelope.type.value} to closed {self!r}")
            return False
        self._outbox.put_nowait(envelope.to_json())
        return True

    def start(self, tasks: "TaskRegistry") -> None:
        """Start the writer task."""
        if self._writer is None:
            self._writer = tasks.register(f"writer:{self.connection_id}", self._write_loop())

    async def _write_loop(self):
        while True:
            data = await self._outbox.get()
            try:
                if self.is_open:
                    await self.channel.send_str(data)
                    self._sent_count += 1
            except Exception as e:
                logger.warning(f"Send error on {self!r}: {e}")
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued message has been handed to the channel."""
        await self._outbox.join()

    async def stop(self) -> None:
        """Stop the writer task; queued messages are discarded."""
        if self._writer:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None


class SessionRegistry:
    """
    Live connections classified by role.

    Holds at most one current agent connection and any number of operator
    connections. The registry never closes channels itself.
    """

    def __init__(self):
        self._agent: Optional[Connection] = None
        self._operators: Dict[str, Connection] = {}

    def register(
        self,
        connection: Connection,
        role: Role,
        operator_id: Optional[str] = None,
    ) -> None:
        """
        Record a connection under a role.

        A new agent connection replaces the current one without closing it.
        """
        if connection.role is not None and connection.role != role:
            self.remove(connection)

        connection.role = role
        connection.operator_id = operator_id

        if role == Role.AGENT:
            previous = self._agent
            if previous is not None and previous is not connection:
                logger.info(f"Agent connection replaced: {previous!r} -> {connection!r}")
            self._agent = connection
            logger.info(f"Agent client registered: {connection!r}")
        else:
            self._operators[connection.connection_id] = connection
            logger.info(
                f"Operator client registered: {operator_id or 'anonymous'} ({connection!r})"
            )

    def remove(self, connection: Connection) -> Optional[Role]:
        """
        Forget a connection.

        Returns:
            The role it was registered under, or None if unknown
        """
        if connection is self._agent:
            self._agent = None
            logger.info(f"Agent client disconnected: {connection!r}")
            return Role.AGENT

        if self._operators.pop(connection.connection_id, None) is not None:
            logger.info(f"Operator client disconnected: {connection!r}")
            return Role.OPERATOR

        return None

    def touch_heartbeat(self, connection: Connection) -> None:
        connection.last_heartbeat_at = now_ms()

    @property
    def agent(self) -> Optional[Connection]:
        """The current agent connection, if any."""
        return self._agent

    @property
    def operators(self) -> List[Connection]:
        """Snapshot of operator connections in registration order."""
        return list(self._operators.values())

    @property
    def operator_count(self) -> int:
        return len(self._operators)

    @property
    def agent_connected(self) -> bool:
        return self._agent is not None and self._agent.is_open

    def stats(self) -> dict:
        """Connection counts."""
        return {
            "connectedUsers": self.operator_count,
            "agentConnected": self.agent_connected,
        }
