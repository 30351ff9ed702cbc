"""Tests for llm_relay.transport: httpx streaming and error mapping."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from llm_relay.transport import (
    build_client,
    extract_error_code,
    extract_error_message,
    iter_response_bytes,
    open_stream,
)
from llm_relay.types import LLMProviderError, StreamCancelled, TransportConfig


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def read_all(client, url="https://api.example.com/v1/chat", headers=None, body=None):
    async with client:
        async with open_stream(client, url, headers or {}, body or {}, provider="acme") as resp:
            return b"".join([c async for c in iter_response_bytes(resp, "acme")])


class TestExtractErrorMessage:
    def test_nested_error_message(self):
        body = json.dumps({"error": {"message": "Invalid API key", "type": "auth"}})
        assert extract_error_message(body, 401) == "Invalid API key"

    def test_string_error(self):
        assert extract_error_message(b'{"error": "quota exceeded"}', 429) == "quota exceeded"

    def test_top_level_message(self):
        assert extract_error_message('{"message": "bad model"}', 400) == "bad model"

    def test_list_wrapped_envelope(self):
        body = json.dumps([{"error": {"code": 400, "message": "API key not valid"}}])
        assert extract_error_message(body, 400) == "API key not valid"

    def test_plain_text_body(self):
        assert extract_error_message(b"upstream exploded", 502, "Bad Gateway") == (
            "HTTP 502 Bad Gateway - upstream exploded"
        )

    def test_empty_body(self):
        assert extract_error_message(b"", 503) == "HTTP 503"

    def test_json_without_message(self):
        assert extract_error_message('{"detail": 1}', 500, "Internal Server Error") == (
            "HTTP 500 Internal Server Error"
        )


class TestExtractErrorCode:
    def test_code_preferred(self):
        assert extract_error_code('{"error": {"code": "rate_limit", "type": "x"}}') == "rate_limit"

    def test_type_fallback(self):
        assert extract_error_code(b'{"error": {"type": "overloaded_error"}}') == "overloaded_error"

    def test_not_json(self):
        assert extract_error_code("nope") is None


class TestOpenStream:
    def test_streams_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, content=b"data: {}\n\n")

        data = asyncio.run(read_all(
            mock_client(handler),
            headers={"Authorization": "Bearer k", "accept-encoding": "br"},
            body={"model": "m", "stream": True},
        ))
        assert data == b"data: {}\n\n"
        assert seen == {"body": {"model": "m", "stream": True}, "auth": "Bearer k"}

    def test_error_status(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "Slow down", "code": "rate_limit"}})

        with pytest.raises(LLMProviderError, match="Slow down") as exc:
            asyncio.run(read_all(mock_client(handler)))
        err = exc.value
        assert err.status_code == 429
        assert err.error_code == "rate_limit"
        assert err.retryable is True
        assert err.provider == "acme"

    def test_client_error_not_retryable(self):
        def handler(request):
            return httpx.Response(400, text="bad request body")

        with pytest.raises(LLMProviderError) as exc:
            asyncio.run(read_all(mock_client(handler)))
        assert exc.value.retryable is False
        assert "bad request body" in str(exc.value)

    def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(LLMProviderError, match="connection refused"):
            asyncio.run(read_all(mock_client(handler)))

    def test_timeout_is_cancellation(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(StreamCancelled) as exc:
            asyncio.run(read_all(mock_client(handler)))
        assert exc.value.reason == "timeout"


class TestBuildClient:
    def test_timeouts(self):
        async def go():
            client = build_client(TransportConfig(timeout=30.0, connect_timeout=5.0))
            async with client:
                return client.timeout

        timeout = asyncio.run(go())
        assert timeout.read == 30.0
        assert timeout.connect == 5.0
