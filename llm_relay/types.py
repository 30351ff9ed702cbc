"""All dataclasses, Protocols, errors, and type aliases for llm-relay."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, Union, runtime_checkable

SdkMode = Literal["openai", "openai-responses", "anthropic", "gemini"]

STATEFUL_MARKER_MIME = "stateful_marker"


# ---------------------------------------------------------------------------
# Canonical content events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ThinkingDelta:
    text: str
    chain_id: str


@dataclass(frozen=True)
class ThinkingEnd:
    """Closes a thinking chain.

    ``chain_id`` is None for a detached signature that binds the preceding
    reasoning to the tool call that follows it.
    """
    chain_id: str | None
    signature: str | None = None


@dataclass(frozen=True)
class ToolCallStart:
    index: int


@dataclass(frozen=True)
class ToolCallComplete:
    call_id: str
    name: str
    args: Any  # parsed JSON value, normally a dict


@dataclass(frozen=True)
class UsageReport:
    input_tokens: int
    output_tokens: int
    cached_tokens: int | None = None
    raw: dict | None = field(default=None, compare=False)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class EncryptedThinking:
    """Opaque reasoning item the vendor wants echoed back on the next turn."""
    item_id: str
    data: str
    summary: tuple[str, ...] | None = None


@dataclass(frozen=True)
class ContinuityPayload:
    """Side-channel data item carrying an encoded continuity marker."""
    data: bytes
    mime_type: str = STATEFUL_MARKER_MIME


ContentEvent = Union[
    TextDelta,
    ThinkingDelta,
    ThinkingEnd,
    ToolCallStart,
    ToolCallComplete,
    UsageReport,
    EncryptedThinking,
    ContinuityPayload,
]


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------

@dataclass
class TextPart:
    text: str


@dataclass
class ThinkingPart:
    text: str
    chain_id: str | None = None
    signature: str | None = None


@dataclass
class ToolCallPart:
    call_id: str
    name: str
    args: Any = field(default_factory=dict)


@dataclass
class ToolResultPart:
    call_id: str
    content: list | str = field(default_factory=list)


@dataclass
class DataPart:
    data: bytes
    mime_type: str = STATEFUL_MARKER_MIME


ContentPart = Union[TextPart, ThinkingPart, ToolCallPart, ToolResultPart, DataPart]


@dataclass
class ChatMessage:
    role: str  # "user", "assistant", "system"
    content: list[ContentPart] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Session continuity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContinuityMarker:
    """Opaque cross-turn state attached to an assistant turn.

    ``provider`` names the vendor, ``sdk_mode`` the protocol variant.
    ``expire_at`` is epoch milliseconds and only set by vendors with
    explicit cache expiry.
    """
    provider: str
    model_id: str
    sdk_mode: str
    session_id: str
    response_id: str
    expire_at: int | None = None


@dataclass(frozen=True)
class MarkerMatch:
    """A decoded marker and the history index of the assistant turn holding it."""
    marker: ContinuityMarker
    index: int


@dataclass(frozen=True)
class ResponseSummary:
    """Line-oriented digest of one response: ``role:kind:payload`` per item."""
    lines: tuple[str, ...] = ()

    @classmethod
    def from_text(cls, text: str) -> ResponseSummary:
        return cls(tuple(line for line in text.split("\n") if line.strip()))

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def __bool__(self) -> bool:
        return bool(self.lines)


@dataclass
class CacheEntry:
    response_id: str
    summary: ResponseSummary
    timestamp: float
    prompt_cache_key: str | None = None


@dataclass(frozen=True)
class ContinuationMatch:
    """Result of a successful continuation lookup.

    The caller resends only ``history[truncate_after_index + 1:]`` and
    passes ``resume_id`` upstream.
    """
    resume_id: str
    truncate_after_index: int
    prompt_cache_key: str | None = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass
class RequestMeta:
    """Per-request facts the adapter and reporter need."""
    model_id: str
    provider: str
    model_name: str = ""
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    session_id: str | None = None
    expire_at: int | None = None  # epoch ms, carried into the marker
    estimated_input_tokens: int = 0

    @property
    def display_name(self) -> str:
        return self.model_name or self.model_id


@dataclass
class RequestPlan:
    """Outgoing request shape decided before the stream opens."""
    session_id: str
    messages: list[ChatMessage]
    body: dict = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    previous_response_id: str | None = None
    expire_at: int | None = None
    marker_index: int = -1
    include_tools: bool = True


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class ReporterConfig:
    text_buffer_length: int = 20
    thinking_buffer_length: int = 20
    placeholder_text: str = "\n"


@dataclass
class MatcherConfig:
    """Continuation cache tunables. Threshold and window are heuristics."""
    max_entries: int = 500
    ttl_seconds: float = 3600.0
    similarity_threshold: float = 90.0
    assistant_window: int = 3
    summary_text_limit: int = 200
    response_items: int = 3


@dataclass
class ContinuityConfig:
    expiry_margin_seconds: float = 300.0
    session_ttl_seconds: float = 3600.0


@dataclass
class TransportConfig:
    timeout: float = 60.0
    connect_timeout: float = 10.0


@dataclass
class RelayConfig:
    version: str = "0.1"
    log_level: str = "INFO"
    output_thinking: bool = True
    reporter: ReporterConfig = field(default_factory=ReporterConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    continuity: ContinuityConfig = field(default_factory=ContinuityConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMProviderError(Exception):
    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        error_code: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.error_code = error_code
        self.retryable = retryable


class StreamCancelled(Exception):
    """The request was cancelled by the caller, a newer request, or a timeout."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class MarkerDecodeError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class ProgressSink(Protocol):
    def report(self, event: ContentEvent) -> None: ...


@runtime_checkable
class UsageSink(Protocol):
    def record_estimated_tokens(
        self, request_id: str, model_id: str, estimated_input_tokens: int,
    ) -> None: ...

    def update_actual_tokens(
        self, request_id: str, usage: UsageReport | None, status: str,
    ) -> None: ...


@runtime_checkable
class CredentialProvider(Protocol):
    def get_api_key(self, vendor_key: str) -> str | None: ...
