"""
Agent-side caller client.

Owns one outbound WebSocket to the caller server, opened lazily on first
use and shared by every request. Requests are correlated with replies by
call id:

- initiate_call waits for a terminal call_status, or gives up locally
  after ``call_timeout`` (120s) with a synthesized no_answer. The server
  has its own 60s ringing timeout; the local one covers a lost status.
- wait_for_response waits for the next user_response for a call id.
- send_text is fire-and-forget.

Failures come back as results (failed status or None), never as
exceptions.
"""

import asyncio
import logging
from typing import Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from ..config import CALL_TIMEOUT_SECONDS, CallerConfig, get_config
from ..config.settings import DEFAULT_AGENT_USER_ID
from ..core.task_registry import TaskRegistry
from ..protocol import (
    CallRequest,
    CallResponse,
    CallResult,
    CallStatus,
    Envelope,
    MessageType,
    ProtocolError,
    RegisterPayload,
    SendMessagePayload,
    now_ms,
    parse_message,
)

logger = logging.getLogger("cc_caller.client")

CALL_TIMED_OUT_ERROR = "Call timed out - no answer from operator"


class CallerClient:
    """
    Correlation layer over a single caller connection.

    Features:
    - Lazy shared connection, registered under the agent sentinel
    - One completion waiter and one reply waiter per call id (last writer wins)
    - Exponential-backoff reconnection after an unexpected close
    """

    def __init__(
        self,
        url: str,
        agent_user_id: str = DEFAULT_AGENT_USER_ID,
        call_timeout: float = CALL_TIMEOUT_SECONDS,
        reconnect_base: float = 1.0,
        reconnect_max: float = 30.0,
        max_reconnect_attempts: int = 5,
        heartbeat_interval: float = 25.0,
        ping_interval: float = 20.0,
        ping_timeout: float = 10.0,
    ):
        """
        Initialize caller client.

        Args:
            url: Caller server WebSocket URL
            agent_user_id: Register sentinel that marks this connection as the agent
            call_timeout: Local safety timeout for initiate_call (seconds)
            reconnect_base: First reconnection delay (seconds), doubled per attempt
            reconnect_max: Upper bound for a reconnection delay (seconds)
            max_reconnect_attempts: Automatic attempts before giving up
            heartbeat_interval: Seconds between outbound heartbeats (0 disables)
            ping_interval: WebSocket ping interval
            ping_timeout: WebSocket ping timeout
        """
        self.url = url
        self.agent_user_id = agent_user_id
        self.call_timeout = call_timeout
        self.reconnect_base = reconnect_base
        self.reconnect_max = reconnect_max
        self.max_reconnect_attempts = max_reconnect_attempts
        self.heartbeat_interval = heartbeat_interval
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

        self.last_heartbeat_at: Optional[int] = None

        self._ws = None
        self._connect_lock = asyncio.Lock()
        self._call_waiters: Dict[str, asyncio.Future] = {}
        self._reply_waiters: Dict[str, asyncio.Future] = {}
        self._tasks = TaskRegistry()
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        self._closing = False

    @classmethod
    def from_config(cls, config: Optional[CallerConfig] = None) -> "CallerClient":
        config = config or get_config()
        return cls(
            url=config.ws_url,
            agent_user_id=config.agent_user_id,
            call_timeout=config.call_timeout,
            reconnect_base=config.reconnect_base,
            reconnect_max=config.reconnect_max,
            max_reconnect_attempts=config.max_reconnect_attempts,
            heartbeat_interval=config.heartbeat_interval,
        )

    @staticmethod
    def _is_open(ws) -> bool:
        return ws is not None and ws.state == State.OPEN

    @property
    def connected(self) -> bool:
        return self._is_open(self._ws)

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection attempt ``attempt`` (1-based)."""
        return min(self.reconnect_base * (2 ** (attempt - 1)), self.reconnect_max)

    # Connection management

    async def connect(self) -> None:
        """
        Open and register the shared connection if it is not open.

        Raises:
            Exception: whatever the transport raises on failure
        """
        if self.connected:
            return

        async with self._connect_lock:
            if self.connected:
                return

            self._closing = False
            logger.info(f"Connecting to: {self.url}")
            ws = await websockets.connect(
                self.url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
            )
            self._ws = ws
            self._reconnect_attempts = 0
            logger.info(f"Connected: {self.url}")

            await self._send(Envelope(
                MessageType.REGISTER,
                RegisterPayload(user_id=self.agent_user_id),
            ))
            self._reader_task = self._tasks.register("caller:reader", self._read_loop(ws))

            if self.heartbeat_interval > 0 and (
                self._heartbeat_task is None or self._heartbeat_task.done()
            ):
                self._heartbeat_task = self._tasks.register(
                    "caller:heartbeat", self._heartbeat_loop()
                )

    async def _ensure_connected(self) -> bool:
        try:
            await self.connect()
            return True
        except Exception as e:
            logger.error(f"Connection failed: {self.url} - {e}")
            return False

    async def _read_loop(self, ws):
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.warning(f"Connection closed: {e}")
        finally:
            if self._ws is ws:
                self._ws = None
            if not self._closing:
                logger.warning("Connection to caller server lost")
                self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = self._tasks.register("caller:reconnect", self._reconnect_loop())

    async def _reconnect_loop(self):
        while not self._closing and not self.connected:
            if self._reconnect_attempts >= self.max_reconnect_attempts:
                logger.error(
                    f"Max reconnection attempts ({self.max_reconnect_attempts}) reached; "
                    f"the next request will retry once"
                )
                return

            self._reconnect_attempts += 1
            delay = self.backoff_delay(self._reconnect_attempts)
            logger.warning(
                f"Reconnecting in {delay:.1f}s "
                f"(attempt {self._reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            await asyncio.sleep(delay)

            if self._closing:
                return
            try:
                await self.connect()
            except Exception as e:
                logger.warning(f"Reconnect failed: {e}")

    async def _heartbeat_loop(self):
        while not self._closing:
            await asyncio.sleep(self.heartbeat_interval)
            if self.connected:
                await self._send(Envelope.heartbeat())

    async def _send(self, envelope: Envelope) -> bool:
        ws = self._ws
        if not self._is_open(ws):
            logger.error(f"WebSocket not connected, cannot send {envelope.type.value}")
            return False
        try:
            await ws.send(envelope.to_json())
            return True
        except ConnectionClosed as e:
            logger.error(f"Send error ({envelope.type.value}): {e}")
            return False

    async def close(self) -> None:
        """Close the connection and stop reconnecting. Pending waits run to their timeouts."""
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except ConnectionClosed:
                pass
        await self._tasks.shutdown()
        logger.info("Caller client closed")

    # Inbound

    def _handle_frame(self, raw) -> None:
        try:
            envelope = parse_message(raw)
        except ProtocolError as e:
            logger.error(f"Failed to parse message: {e}")
            return

        if envelope.type == MessageType.CALL_STATUS:
            self._on_call_status(envelope.payload)
        elif envelope.type == MessageType.USER_RESPONSE:
            self._on_user_response(envelope.payload)
        elif envelope.type == MessageType.HEARTBEAT:
            # Echo of our own heartbeat; answering it would ping-pong forever.
            self.last_heartbeat_at = now_ms()
        else:
            logger.warning(f"Unexpected message type: {envelope.type.value}")

    def _on_call_status(self, result: CallResult) -> None:
        waiter = self._call_waiters.get(result.call_id)
        if waiter is None:
            logger.debug(f"No waiter for call_status {result.call_id} ({result.status.value})")
            return

        if not result.status.is_terminal:
            logger.info(f"Call {result.call_id} is {result.status.value}")
            return

        del self._call_waiters[result.call_id]
        if not waiter.done():
            waiter.set_result(result)

    def _on_user_response(self, response: CallResponse) -> None:
        waiter = self._reply_waiters.pop(response.call_id, None)
        if waiter is None:
            logger.debug(f"No reply waiter for call {response.call_id}, dropped")
            return
        if not waiter.done():
            waiter.set_result(response)

    # Requests

    async def initiate_call(self, request: CallRequest) -> CallResult:
        """
        Start a call and wait for its outcome.

        Returns:
            The terminal CallResult; no_answer if nothing terminal arrives
            within call_timeout, failed if the server cannot be reached
        """
        call_id = request.call_id

        if not await self._ensure_connected():
            return CallResult(
                call_id=call_id,
                status=CallStatus.FAILED,
                error=f"Could not connect to caller server at {self.url}",
            )

        waiter = asyncio.get_running_loop().create_future()
        self._call_waiters[call_id] = waiter

        try:
            if not await self._send(Envelope(MessageType.INITIATE_CALL, request)):
                return CallResult(
                    call_id=call_id,
                    status=CallStatus.FAILED,
                    error="Connection to caller server lost before the call was sent",
                )

            try:
                return await asyncio.wait_for(waiter, timeout=self.call_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Call {call_id} timed out locally after {self.call_timeout}s")
                return CallResult(
                    call_id=call_id,
                    status=CallStatus.NO_ANSWER,
                    error=CALL_TIMED_OUT_ERROR,
                )
        finally:
            if self._call_waiters.get(call_id) is waiter:
                del self._call_waiters[call_id]

    async def wait_for_response(
        self, call_id: str, timeout: float = 60.0
    ) -> Optional[CallResponse]:
        """
        Wait for the operator's next reply on a call.

        Returns:
            The reply, or None on timeout or when the server is unreachable
        """
        if not await self._ensure_connected():
            return None

        waiter = asyncio.get_running_loop().create_future()
        self._reply_waiters[call_id] = waiter

        try:
            return await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            logger.info(f"No reply for call {call_id} within {timeout}s")
            return None
        finally:
            if self._reply_waiters.get(call_id) is waiter:
                del self._reply_waiters[call_id]

    async def send_text(self, call_id: str, text: str) -> bool:
        """
        Send a follow-up message to speak in a call.

        Returns:
            True if the message was handed to the connection
        """
        if not await self._ensure_connected():
            return False
        return await self._send(Envelope(
            MessageType.SEND_MESSAGE,
            SendMessagePayload(call_id=call_id, message=text),
        ))


# Process-wide default client for the tool surface
_client: Optional[CallerClient] = None


def get_caller_client(url: Optional[str] = None) -> CallerClient:
    """Get or create the default caller client."""
    global _client
    if _client is None:
        _client = CallerClient.from_config()
        if url:
            _client.url = url
    return _client


def reset_caller_client() -> None:
    """Forget the default client (useful for testing)."""
    global _client
    _client = None
