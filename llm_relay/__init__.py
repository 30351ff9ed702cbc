"""llm-relay: streaming normalization and session continuity for multi-vendor LLM APIs."""

from .adapters import create_adapter, get_adapter, handle_stream, list_adapters
from .config import load_config
from .core.continuity import decode_marker, encode_marker, find_marker
from .core.matcher import ContinuationMatcher
from .core.reporter import EventCollector, StreamReporter
from .types import (
    ChatMessage,
    ContentEvent,
    ContinuationMatch,
    ContinuityMarker,
    LLMProviderError,
    RelayConfig,
    RequestMeta,
    StreamCancelled,
)

__version__ = "0.1.0"

__all__ = [
    "ChatMessage",
    "ContentEvent",
    "ContinuationMatch",
    "ContinuationMatcher",
    "ContinuityMarker",
    "EventCollector",
    "LLMProviderError",
    "RelayConfig",
    "RequestMeta",
    "StreamCancelled",
    "StreamReporter",
    "create_adapter",
    "decode_marker",
    "encode_marker",
    "find_marker",
    "get_adapter",
    "handle_stream",
    "list_adapters",
    "load_config",
]
