"""Streaming HTTP transport on httpx.

Opens the upstream request, turns non-2xx responses into
``LLMProviderError`` with the vendor's own message, and maps timeouts to
cancellation.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from .types import LLMProviderError, StreamCancelled, TransportConfig

logger = logging.getLogger(__name__)


def extract_error_message(body: bytes | str, status_code: int, reason: str = "") -> str:
    """Best human-readable message from an error response body.

    Prefers ``error.message`` (or a string ``error`` / top-level
    ``message``) from a JSON envelope; falls back to the status line plus
    raw text.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    base = f"HTTP {status_code}" + (f" {reason}" if reason else "")
    try:
        parsed = json.loads(text) if text.strip() else None
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
        # Gemini gateways sometimes wrap the envelope in a list.
        parsed = parsed[0]
    if isinstance(parsed, dict):
        err = parsed.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg
        elif isinstance(err, str) and err.strip():
            return err
        msg = parsed.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg
        return base
    if text.strip():
        return f"{base} - {text.strip()}"
    return base


def extract_error_code(body: bytes | str) -> str | None:
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
        code = parsed["error"].get("code") or parsed["error"].get("type")
        return str(code) if code is not None else None
    return None


def build_client(config: TransportConfig | None = None, **kwargs) -> httpx.AsyncClient:
    config = config or TransportConfig()
    timeout = httpx.Timeout(config.timeout, connect=config.connect_timeout)
    return httpx.AsyncClient(timeout=timeout, **kwargs)


@asynccontextmanager
async def open_stream(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    body: dict,
    provider: str = "",
) -> AsyncIterator[httpx.Response]:
    """POST *body* and yield the streaming response once headers arrive.

    Raises:
        LLMProviderError: network failure or non-2xx status.
        StreamCancelled: the transport timed out.
    """
    headers = dict(headers)
    headers.pop("accept-encoding", None)
    req = client.build_request("POST", url, headers=headers, json=body)
    try:
        upstream = await client.send(req, stream=True)
    except httpx.TimeoutException as e:
        raise StreamCancelled("timeout") from e
    except httpx.HTTPError as e:
        raise LLMProviderError(f"HTTP error: {e}", provider=provider) from e

    try:
        if upstream.status_code >= 300:
            error_bytes = await upstream.aread()
            message = extract_error_message(error_bytes, upstream.status_code, upstream.reason_phrase)
            logger.error(
                "Upstream %s returned %d: %s",
                provider or url, upstream.status_code, error_bytes[:200].decode("utf-8", errors="replace"),
            )
            raise LLMProviderError(
                message,
                provider=provider,
                status_code=upstream.status_code,
                error_code=extract_error_code(error_bytes),
                retryable=upstream.status_code == 429 or upstream.status_code >= 500,
            )
        yield upstream
    finally:
        await upstream.aclose()


async def iter_response_bytes(response: httpx.Response, provider: str = "") -> AsyncIterator[bytes]:
    """``response.aiter_bytes()`` with httpx failures mapped to relay errors."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.TimeoutException as e:
        raise StreamCancelled("timeout") from e
    except httpx.HTTPError as e:
        raise LLMProviderError(f"Stream interrupted: {e}", provider=provider) from e
