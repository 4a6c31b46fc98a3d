"""Tests for the agent tool surface."""

import os
import pytest
import sys
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from cc_caller.protocol import CallResponse, CallResult, CallStatus, Urgency
from cc_caller.tools import call_user, end_call, send_message_in_call, wait_for_reply


def mock_client(result=None, response=None, sent=True):
    client = MagicMock()

    async def initiate_call(request):
        if result is None:
            return CallResult(call_id=request.call_id, status=CallStatus.COMPLETED)
        return CallResult(call_id=request.call_id, **result)

    client.initiate_call = AsyncMock(side_effect=initiate_call)
    client.wait_for_response = AsyncMock(return_value=response)
    client.send_text = AsyncMock(return_value=sent)
    return client


class TestCallUser:
    """Test the call_user tool."""

    @pytest.mark.asyncio
    async def test_completed_call(self):
        client = mock_client({
            "status": CallStatus.COMPLETED,
            "user_response": "Go ahead",
            "duration": 3400,
        })

        result = await call_user("Deploy to prod?", client=client)

        assert result.success
        assert result.structured["status"] == "completed"
        assert result.structured["user_response"] == "Go ahead"
        assert result.structured["duration_seconds"] == 3
        assert "Go ahead" in result.text
        assert result.to_dict()["content"][0]["type"] == "text"

    @pytest.mark.asyncio
    async def test_request_fields(self):
        client = mock_client()

        result = await call_user(
            "Deploy to prod?",
            urgency="high",
            context="release 1.2",
            wait_for_response=False,
            client=client,
        )

        request = client.initiate_call.call_args.args[0]
        assert request.urgency == Urgency.HIGH
        assert request.context == "release 1.2"
        assert request.requires_response is False
        assert request.call_id == result.structured["call_id"]

    @pytest.mark.asyncio
    async def test_fresh_call_id_per_call(self):
        client = mock_client()

        first = await call_user("one", client=client)
        second = await call_user("two", client=client)

        assert first.structured["call_id"] != second.structured["call_id"]

    @pytest.mark.asyncio
    async def test_no_answer(self):
        client = mock_client({"status": CallStatus.NO_ANSWER, "error": "no answer from operator"})

        result = await call_user("Anyone there?", client=client)

        assert not result.success
        assert result.structured["status"] == "no_answer"
        assert "not answered" in result.text

    @pytest.mark.asyncio
    async def test_failed(self):
        client = mock_client({"status": CallStatus.FAILED, "error": "no operator clients connected"})

        result = await call_user("Anyone there?", client=client)

        assert not result.success
        assert result.structured["error"] == "no operator clients connected"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"message": ""},
        {"message": "x" * 2001},
        {"message": "ok", "context": "x" * 501},
        {"message": "ok", "urgency": "asap"},
    ])
    async def test_invalid_arguments(self, kwargs):
        client = mock_client()

        result = await call_user(client=client, **kwargs)

        assert not result.success
        assert result.text.startswith("Invalid arguments")
        client.initiate_call.assert_not_called()


class TestSendMessageInCall:

    @pytest.mark.asyncio
    async def test_sent(self):
        client = mock_client()

        result = await send_message_in_call("c1", "One more thing", client=client)

        assert result.success
        client.send_text.assert_awaited_once_with("c1", "One more thing")

    @pytest.mark.asyncio
    async def test_server_unreachable(self):
        result = await send_message_in_call("c1", "hello", client=mock_client(sent=False))

        assert not result.success

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self):
        client = mock_client()

        result = await send_message_in_call("c1", "", client=client)

        assert not result.success
        client.send_text.assert_not_called()


class TestWaitForReply:

    @pytest.mark.asyncio
    async def test_reply_received(self):
        client = mock_client(response=CallResponse(call_id="c1", user_message="Later", timestamp=99))

        result = await wait_for_reply("c1", timeout_seconds=30, client=client)

        assert result.success
        assert result.structured["user_response"] == "Later"
        assert result.structured["received_at"] == 99
        client.wait_for_response.assert_awaited_once_with("c1", timeout=30.0)

    @pytest.mark.asyncio
    async def test_timeout(self):
        result = await wait_for_reply("c1", client=mock_client(response=None))

        assert not result.success
        assert result.structured["timeout"] is True
        assert result.structured["waited_seconds"] == 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout", [4, 301, 2.5, True])
    async def test_timeout_out_of_range(self, timeout):
        client = mock_client()

        result = await wait_for_reply("c1", timeout_seconds=timeout, client=client)

        assert not result.success
        client.wait_for_response.assert_not_called()


class TestEndCall:

    @pytest.mark.asyncio
    async def test_farewell_spoken(self):
        client = mock_client()

        result = await end_call("c1", farewell_message="Thanks, bye", client=client, grace_seconds=0)

        assert result.success
        assert result.structured["farewell_delivered"] is True
        client.send_text.assert_awaited_once_with("c1", "Thanks, bye")

    @pytest.mark.asyncio
    async def test_without_farewell(self):
        client = mock_client()

        result = await end_call("c1", client=client)

        assert result.success
        assert result.structured["farewell_delivered"] is False
        client.send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_undelivered_farewell_still_ends(self):
        result = await end_call(
            "c1", farewell_message="bye", client=mock_client(sent=False), grace_seconds=0
        )

        assert result.success
        assert result.structured["farewell_delivered"] is False
        assert "could not be delivered" in result.text
