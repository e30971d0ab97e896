"""Tests for the httpx transport and an engine wired to it."""

from __future__ import annotations

import json

import httpx
import pytest

from convo.core.engine import ConversationEngine
from convo.core.errors import BadResponse, TransportError
from convo.core.transport import HttpxTransport

BASE_URL = "https://api.example.test/v1"


def make_transport(handler) -> HttpxTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxTransport(BASE_URL, "sk-test", client=client)


class TestHttpxTransport:

    @pytest.mark.asyncio
    async def test_post_sends_auth_and_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler)
        response = await transport.post({"model": "gpt-4", "stream": False})

        assert response.ok
        assert json.loads(response.text) == {"ok": True}
        assert seen["url"] == f"{BASE_URL}/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {"model": "gpt-4", "stream": False}

    @pytest.mark.asyncio
    async def test_connection_error_becomes_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        transport = make_transport(handler)
        with pytest.raises(TransportError):
            await transport.post({})
        with pytest.raises(TransportError):
            async with transport.stream({}):
                pass

    @pytest.mark.asyncio
    async def test_stream_lines(self):
        body = "data: one\n\ndata: two\n"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=body)

        transport = make_transport(handler)
        async with transport.stream({}) as response:
            assert response.status_code == 200
            lines = [line async for line in response.lines()]
        assert [line for line in lines if line] == ["data: one", "data: two"]


class TestEngineOverHttpx:

    @pytest.mark.asyncio
    async def test_buffered_round_trip(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"choices": [{"message": {"role": "assistant", "content": "hello"}}]},
            )

        engine = ConversationEngine(transport=make_transport(handler))
        assert await engine.send_message("hi") == "hello"
        assert [m.content for m in engine.history_list] == ["hi", "hello"]

    @pytest.mark.asyncio
    async def test_streamed_round_trip(self):
        events = [
            {"choices": [{"delta": {"role": "assistant"}}]},
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]},
        ]
        body = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"

        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, text=body)

        engine = ConversationEngine(transport=make_transport(handler))
        stream = await engine.send_message_stream("hi")
        assert [f async for f in stream] == ["Hel", "lo"]
        assert [m.content for m in engine.history_list] == ["hi", "Hello"]

    @pytest.mark.asyncio
    async def test_streamed_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                401,
                text=json.dumps({"error": {"message": "Incorrect API key", "type": "invalid_request_error"}}, indent=2),
            )

        engine = ConversationEngine(transport=make_transport(handler))
        with pytest.raises(BadResponse) as exc_info:
            await engine.send_message_stream("hi")
        assert str(exc_info.value) == "bad response: 401. Incorrect API key"
