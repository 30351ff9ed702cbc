"""Single-request orchestration: slot, transport, adapter, usage."""

from __future__ import annotations

import asyncio
import logging

import httpx

from .adapters.base import StreamAdapter
from .core.cancellation import CancelToken, StreamSlots
from .transport import iter_response_bytes, open_stream
from .types import CredentialProvider, LLMProviderError, StreamCancelled, UsageSink
from .usage import notify_actual, notify_estimated

logger = logging.getLogger(__name__)


async def relay_stream(
    client: httpx.AsyncClient,
    adapter: StreamAdapter,
    url: str,
    headers: dict[str, str],
    body: dict,
    *,
    cancel_token: CancelToken | None = None,
    slots: StreamSlots | None = None,
    slot: str | None = None,
    usage_sink: UsageSink | None = None,
    credentials: CredentialProvider | None = None,
) -> bool:
    """Send one streaming request and run *adapter* over the response.

    When *slots* and *slot* are given, any earlier request still holding
    the slot is cancelled first and the slot's token replaces
    *cancel_token*.  When *credentials* is given, the API key for the
    request's provider is added to *headers* in the adapter's auth header.

    Raises:
        StreamCancelled: cancelled before or during the stream.
        LLMProviderError: transport failure, non-2xx status, or a
            vendor-reported stream error.
    """
    meta = adapter.meta
    provider = meta.provider
    if credentials is not None:
        api_key = credentials.get_api_key(provider)
        if not api_key:
            raise LLMProviderError(f"No API key configured for {provider}", provider=provider)
        headers = {**headers, **adapter.auth_headers(api_key)}
    if slots is not None and slot:
        token = slots.acquire(slot)
    else:
        token = cancel_token or CancelToken()
    if usage_sink is not None and adapter.usage_sink is None:
        adapter.usage_sink = usage_sink

    notify_estimated(adapter.usage_sink, meta.request_id, meta.model_id, meta.estimated_input_tokens)
    logger.info("[%s] Sending %s request", meta.display_name, adapter.name)

    async def _run() -> bool:
        async with open_stream(client, url, headers, body, provider=provider) as upstream:
            return await adapter.handle_stream(iter_response_bytes(upstream, provider), token)

    run = asyncio.ensure_future(_run())
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({run, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if run not in done:
            run.cancel()
            await asyncio.gather(run, return_exceptions=True)
            raise StreamCancelled(token.reason or "cancelled")
        return run.result()
    except (StreamCancelled, asyncio.CancelledError):
        if not run.done():
            run.cancel()
            await asyncio.gather(run, return_exceptions=True)
        if adapter.outcome is None:
            notify_actual(adapter.usage_sink, meta.request_id, None, "cancelled")
        raise
    except LLMProviderError:
        if adapter.outcome is None:
            notify_actual(adapter.usage_sink, meta.request_id, None, "failed")
        raise
    finally:
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        if slots is not None and slot:
            slots.release(slot, token)
