"""Pytest configuration and fixtures."""

import asyncio
import json
import os
import sys
import pytest

# Add python directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from websockets.protocol import State


def pytest_configure(config):
    """Configure pytest."""
    os.environ['CC_CALLER_LOG_LEVEL'] = 'WARNING'
    # Register asyncio marker
    config.addinivalue_line("markers", "asyncio: mark test as async")


class FakeChannel:
    """Server-side channel double recording every frame sent to it."""

    def __init__(self):
        self.closed = False
        self.sent = []

    async def send_str(self, data):
        if self.closed:
            raise ConnectionResetError("channel closed")
        self.sent.append(json.loads(data))

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, message_type):
        return [m for m in self.sent if m["type"] == message_type]


class FakeWebSocket:
    """Client-side websocket double: frames fed in are yielded by iteration."""

    def __init__(self):
        self.state = State.OPEN
        self.sent = []
        self._incoming = asyncio.Queue()

    async def send(self, data):
        self.sent.append(json.loads(data))

    def feed(self, message):
        self._incoming.put_nowait(json.dumps(message))

    def drop(self):
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            self.state = State.CLOSED
            raise StopAsyncIteration
        return item

    async def close(self):
        self.state = State.CLOSED
        self._incoming.put_nowait(None)

    def types(self):
        return [m["type"] for m in self.sent]


@pytest.fixture
def fake_channel():
    return FakeChannel()


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def caller_config():
    """Config with short timeouts and no push credentials."""
    from cc_caller.config import CallerConfig, reset_config

    reset_config()
    return CallerConfig(
        ring_timeout=0.2,
        call_timeout=1.0,
        vapid_public_key=None,
        vapid_private_key=None,
        vapid_subject=None,
        metrics_enabled=False,
    )


@pytest.fixture
def push_subscription():
    """A browser PushSubscription JSON."""
    return {
        "endpoint": "https://push.example.com/send/abc123",
        "expirationTime": None,
        "keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM", "auth": "tBHItJI5svbpez7KI4CCXg"},
    }
