"""Vendor stream adapters and the adapter registry.

Usage:

    adapter = create_adapter("openai", meta, sink)
    await adapter.handle_stream(byte_stream, cancel_token)
"""

from __future__ import annotations

from collections.abc import AsyncIterable

from ..core.cancellation import CancelToken
from ..types import ProgressSink, RequestMeta
from .anthropic import AnthropicAdapter
from .base import Frame, LineFramer, SseFramer, StreamAdapter, parse_sse_events
from .gemini import GeminiAdapter
from .openai_chat import OpenAIChatAdapter
from .openai_responses import OpenAIResponsesAdapter

_ADAPTER_REGISTRY: dict[str, type[StreamAdapter]] = {
    "openai": OpenAIChatAdapter,
    "openai-responses": OpenAIResponsesAdapter,
    "anthropic": AnthropicAdapter,
    "gemini": GeminiAdapter,
}


def get_adapter(name: str) -> type[StreamAdapter]:
    """Look up an adapter class by name."""
    try:
        return _ADAPTER_REGISTRY[name]
    except KeyError:
        raise ValueError(
            f"Unknown adapter: {name!r} (available: {', '.join(list_adapters())})"
        ) from None


def list_adapters() -> list[str]:
    return sorted(_ADAPTER_REGISTRY)


def create_adapter(name: str, meta: RequestMeta, sink: ProgressSink, **kwargs) -> StreamAdapter:
    return get_adapter(name)(meta, sink, **kwargs)


async def handle_stream(
    name: str,
    meta: RequestMeta,
    stream: AsyncIterable[bytes],
    sink: ProgressSink,
    cancel_token: CancelToken | None = None,
    **kwargs,
) -> bool:
    """One-shot: build the named adapter and run it over *stream*."""
    adapter = create_adapter(name, meta, sink, **kwargs)
    return await adapter.handle_stream(stream, cancel_token)


__all__ = [
    "AnthropicAdapter",
    "Frame",
    "GeminiAdapter",
    "LineFramer",
    "OpenAIChatAdapter",
    "OpenAIResponsesAdapter",
    "SseFramer",
    "StreamAdapter",
    "create_adapter",
    "get_adapter",
    "handle_stream",
    "list_adapters",
    "parse_sse_events",
]
