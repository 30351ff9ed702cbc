"""Shared fixtures for llm-relay tests."""

from __future__ import annotations

import json

import pytest

from llm_relay.core.reporter import EventCollector
from llm_relay.types import (
    ChatMessage,
    RequestMeta,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingUsageSink:
    def __init__(self) -> None:
        self.estimated: list[tuple] = []
        self.actual: list[tuple] = []

    def record_estimated_tokens(self, request_id, model_id, estimated_input_tokens):
        self.estimated.append((request_id, model_id, estimated_input_tokens))

    def update_actual_tokens(self, request_id, usage, status):
        self.actual.append((request_id, usage, status))


class FailingUsageSink:
    def record_estimated_tokens(self, request_id, model_id, estimated_input_tokens):
        raise RuntimeError("usage store offline")

    def update_actual_tokens(self, request_id, usage, status):
        raise RuntimeError("usage store offline")


class ExplodingSink:
    """ProgressSink whose consumer is broken."""

    def __init__(self) -> None:
        self.calls = 0

    def report(self, event) -> None:
        self.calls += 1
        raise RuntimeError("consumer went away")


async def byte_stream(*chunks: bytes):
    for chunk in chunks:
        yield chunk


def sse(*events: dict, done: bool = False, named: bool = False) -> bytes:
    """Encode dicts as SSE frames, optionally with ``event:`` lines and [DONE]."""
    out = b""
    for event in events:
        if named and "type" in event:
            out += f"event: {event['type']}\n".encode()
        out += b"data: " + json.dumps(event).encode() + b"\n\n"
    if done:
        out += b"data: [DONE]\n\n"
    return out


def split_bytes(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def user(text: str) -> ChatMessage:
    return ChatMessage(role="user", content=[TextPart(text)])


def assistant(*parts) -> ChatMessage:
    return ChatMessage(role="assistant", content=list(parts))


@pytest.fixture
def meta() -> RequestMeta:
    return RequestMeta(model_id="test-model", provider="test-vendor", request_id="req-1")


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def usage_sink() -> RecordingUsageSink:
    return RecordingUsageSink()


@pytest.fixture
def tool_history() -> list[ChatMessage]:
    """user / assistant(tool call) / user(tool result) / assistant(text)."""
    return [
        user("What is the weather in Paris?"),
        assistant(ToolCallPart("call_1", "get_weather", {"city": "Paris"})),
        ChatMessage(role="user", content=[ToolResultPart("call_1", ["sunny", "21C"])]),
        assistant(TextPart("It is sunny and 21 degrees in Paris today.")),
        user("And tomorrow?"),
    ]
