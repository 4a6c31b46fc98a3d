"""
Caller HTTP/WebSocket server.

Endpoints:
- GET /ws - WebSocket for agent and operator clients
- GET /stats - Call and connection counts
- GET /health, /health/live - Health probes
- GET /api/push/public-key - VAPID public key for browser subscriptions
- POST /api/push/subscribe - Store a browser push subscription
"""

import logging
from pathlib import Path
from typing import Optional

from aiohttp import WSMsgType, web

from ..config import CallerConfig, get_config
from ..core import CallCoordinator, Connection
from ..metrics import MetricsCollector
from ..protocol import ProtocolError, parse_message
from ..push import PushNotifier

logger = logging.getLogger("cc_caller.api")


class CallerServer:
    """
    aiohttp application hosting the call coordinator.

    The server owns transport concerns only: it turns sockets into
    Connections, parses frames and hands them to the coordinator.
    """

    def __init__(
        self,
        config: Optional[CallerConfig] = None,
        coordinator: Optional[CallCoordinator] = None,
        push: Optional[PushNotifier] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or get_config()
        self.metrics = metrics
        self.push = push or PushNotifier.from_config(self.config, metrics=metrics)
        self.coordinator = coordinator or CallCoordinator(
            config=self.config,
            push=self.push,
            metrics=metrics,
        )
        self._runner: Optional[web.AppRunner] = None
        self._started = False

    # WebSocket

    async def websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        connection = Connection(ws)
        self.coordinator.attach(connection)
        logger.info(f"New WebSocket connection {connection!r} from {request.remote}")

        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    self._handle_frame(connection, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"WebSocket error on {connection!r}: {ws.exception()}")
        finally:
            await self.coordinator.detach(connection)
            logger.info(f"WebSocket connection closed {connection!r}")

        return ws

    def _handle_frame(self, connection: Connection, data) -> None:
        try:
            envelope = parse_message(data)
        except ProtocolError as e:
            logger.warning(f"Dropped malformed message from {connection!r}: {e}")
            if self.metrics:
                self.metrics.protocol_error()
            return
        self.coordinator.handle_message(connection, envelope)

    # HTTP

    async def stats_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.coordinator.stats())

    async def health_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", **self.coordinator.stats()})

    async def live_handler(self, request: web.Request) -> web.Response:
        """Liveness probe - just returns OK if process is running."""
        return web.Response(text="OK", status=200)

    async def public_key_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"publicKey": self.push.public_key})

    async def subscribe_handler(self, request: web.Request) -> web.Response:
        """
        Store a push subscription.

        POST /api/push/subscribe
        Body: {"endpoint": "https://...", "keys": {"p256dh": "...", "auth": "..."}}
        """
        try:
            data = await request.json()
        except ValueError:
            return web.json_response({"error": "invalid JSON body"}, status=400)

        try:
            self.push.subscribe(data)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)

        return web.json_response({"ok": True, "pushEnabled": self.push.configured})

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self.websocket_handler)
        app.router.add_get("/stats", self.stats_handler)
        app.router.add_get("/health", self.health_handler)
        app.router.add_get("/health/live", self.live_handler)
        app.router.add_get("/api/push/public-key", self.public_key_handler)
        app.router.add_post("/api/push/subscribe", self.subscribe_handler)

        if self.config.static_dir and Path(self.config.static_dir).is_dir():
            app.router.add_static("/", self.config.static_dir, show_index=False)
            logger.info(f"Serving static files from {self.config.static_dir}")

        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        await self.coordinator.start()

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.coordinator.stop()

    async def start(self) -> None:
        """Start the HTTP/WebSocket server."""
        if self._started:
            return

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()

        self._started = True
        logger.info(f"cc-caller server started on {self.config.host}:{self.config.port}")
        logger.info(f"  WebSocket: ws://{self.config.host}:{self.config.port}/ws")
        logger.info(f"  Push: {'enabled' if self.push.configured else 'disabled (no VAPID keys)'}")

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._started = False
        logger.info("cc-caller server stopped")
