"""Tests for the caller HTTP/WebSocket server."""

import asyncio
import os
import pytest
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from aiohttp.test_utils import TestClient, TestServer

from cc_caller.api import CallerServer
from cc_caller.client import CallerClient
from cc_caller.protocol import CallRequest, CallStatus


def http_client(server):
    return TestClient(TestServer(server.build_app()))


async def register(ws, user_id):
    """Register and wait until the server has processed it."""
    await ws.send_json({"type": "register", "payload": {"userId": user_id}})
    await ws.send_json({"type": "heartbeat", "payload": {}})
    reply = await ws.receive_json(timeout=2)
    assert reply["type"] == "heartbeat"


class TestHttpEndpoints:
    """Test status and push endpoints."""

    @pytest.mark.asyncio
    async def test_stats_empty(self, caller_config):
        async with http_client(CallerServer(config=caller_config)) as http:
            resp = await http.get("/stats")

            assert resp.status == 200
            assert await resp.json() == {
                "activeCalls": 0,
                "connectedUsers": 0,
                "agentConnected": False,
            }

    @pytest.mark.asyncio
    async def test_health(self, caller_config):
        async with http_client(CallerServer(config=caller_config)) as http:
            health = await (await http.get("/health")).json()
            live = await http.get("/health/live")

            assert health["status"] == "ok"
            assert live.status == 200

    @pytest.mark.asyncio
    async def test_public_key(self, caller_config):
        caller_config.vapid_public_key = "BPublicKey"

        async with http_client(CallerServer(config=caller_config)) as http:
            data = await (await http.get("/api/push/public-key")).json()

        assert data == {"publicKey": "BPublicKey"}

    @pytest.mark.asyncio
    async def test_subscribe(self, caller_config, push_subscription):
        server = CallerServer(config=caller_config)

        async with http_client(server) as http:
            resp = await http.post("/api/push/subscribe", json=push_subscription)

            assert resp.status == 200
            assert await resp.json() == {"ok": True, "pushEnabled": False}
            assert server.push.subscription_count == 1

    @pytest.mark.asyncio
    async def test_subscribe_rejects_bad_body(self, caller_config):
        async with http_client(CallerServer(config=caller_config)) as http:
            not_json = await http.post("/api/push/subscribe", data="nope")
            not_utf8 = await http.post(
                "/api/push/subscribe",
                data=b"\xff\xfe\x00",
                headers={"Content-Type": "application/json"},
            )
            no_keys = await http.post("/api/push/subscribe", json={"endpoint": "https://x"})

            assert not_json.status == 400
            assert not_utf8.status == 400
            assert no_keys.status == 400


class TestWebSocket:
    """Test the WebSocket relay end to end."""

    @pytest.mark.asyncio
    async def test_heartbeat_echo(self, caller_config):
        async with http_client(CallerServer(config=caller_config)) as http:
            ws = await http.ws_connect("/ws")
            await ws.send_json({"type": "heartbeat", "payload": {}})

            reply = await ws.receive_json(timeout=2)

            assert reply["type"] == "heartbeat"
            assert reply["payload"] == {}
            await ws.close()

    @pytest.mark.asyncio
    async def test_malformed_frame_keeps_connection(self, caller_config):
        async with http_client(CallerServer(config=caller_config)) as http:
            ws = await http.ws_connect("/ws")
            await ws.send_str("not json")
            await ws.send_json({"type": "dial", "payload": {}})
            await ws.send_json({"type": "heartbeat", "payload": {}})

            reply = await ws.receive_json(timeout=2)

            assert reply["type"] == "heartbeat"
            await ws.close()

    @pytest.mark.asyncio
    async def test_non_finite_number_keeps_connection(self, caller_config):
        """A NaN timestamp is dropped like any other malformed frame."""
        async with http_client(CallerServer(config=caller_config)) as http:
            ws = await http.ws_connect("/ws")
            await ws.send_str('{"type": "heartbeat", "payload": {}, "timestamp": NaN}')
            await ws.send_str('{"type": "heartbeat", "payload": {}, "timestamp": 1e400}')
            await ws.send_json({"type": "heartbeat", "payload": {}})

            reply = await ws.receive_json(timeout=2)

            assert reply["type"] == "heartbeat"
            assert not ws.closed
            await ws.close()

    @pytest.mark.asyncio
    async def test_call_round_trip(self, caller_config):
        server = CallerServer(config=caller_config)

        async with http_client(server) as http:
            operator = await http.ws_connect("/ws")
            agent = await http.ws_connect("/ws")
            await register(operator, "browser-1")
            await register(agent, "claude-code")

            await agent.send_json({
                "type": "initiate_call",
                "payload": {"callId": "c1", "message": "Merge now?", "urgency": "high"},
            })
            incoming = await operator.receive_json(timeout=2)
            assert incoming["type"] == "incoming_call"
            assert incoming["payload"]["callId"] == "c1"
            assert incoming["payload"]["urgency"] == "high"

            await operator.send_json({"type": "call_accepted", "payload": {"callId": "c1"}})
            connected = await agent.receive_json(timeout=2)
            assert connected["payload"]["status"] == "connected"

            await operator.send_json({
                "type": "user_response",
                "payload": {"callId": "c1", "userMessage": "Yes, merge"},
            })
            reply = await agent.receive_json(timeout=2)
            completed = await agent.receive_json(timeout=2)
            assert reply["type"] == "user_response"
            assert reply["payload"]["userMessage"] == "Yes, merge"
            assert completed["payload"]["status"] == "completed"
            assert completed["payload"]["userResponse"] == "Yes, merge"

            stats = await (await http.get("/stats")).json()
            assert stats == {"activeCalls": 1, "connectedUsers": 1, "agentConnected": True}

            await operator.close()
            await agent.close()

    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self, caller_config):
        server = CallerServer(config=caller_config)

        async with http_client(server) as http:
            operator = await http.ws_connect("/ws")
            await register(operator, "browser-1")
            assert server.coordinator.registry.operator_count == 1

            await operator.close()
            for _ in range(50):
                if server.coordinator.registry.operator_count == 0:
                    break
                await asyncio.sleep(0.01)

            assert server.coordinator.registry.operator_count == 0


class TestCallerClientIntegration:
    """Drive the server with the real agent-side client."""

    @pytest.mark.asyncio
    async def test_call_user_flow(self, caller_config):
        async with http_client(CallerServer(config=caller_config)) as http:
            operator = await http.ws_connect("/ws")
            await register(operator, "browser-1")

            url = str(http.make_url("/ws")).replace("http://", "ws://")
            client = CallerClient(url, heartbeat_interval=0, call_timeout=5)
            task = asyncio.create_task(client.initiate_call(CallRequest(call_id="c1", message="hi")))

            incoming = await operator.receive_json(timeout=2)
            assert incoming["payload"]["callId"] == "c1"
            await operator.send_json({"type": "call_accepted", "payload": {"callId": "c1"}})
            await operator.send_json({
                "type": "user_response",
                "payload": {"callId": "c1", "userMessage": "hi there"},
            })

            result = await asyncio.wait_for(task, timeout=5)
            assert result.status == CallStatus.COMPLETED
            assert result.user_response == "hi there"

            await client.close()
            await operator.close()

    @pytest.mark.asyncio
    async def test_no_operator_fails_fast(self, caller_config):
        async with http_client(CallerServer(config=caller_config)) as http:
            url = str(http.make_url("/ws")).replace("http://", "ws://")
            client = CallerClient(url, heartbeat_interval=0, call_timeout=5)

            result = await asyncio.wait_for(
                client.initiate_call(CallRequest(call_id="c1", message="hi")), timeout=5
            )

            assert result.status == CallStatus.FAILED
            assert result.error == "no operator clients connected"
            await client.close()
