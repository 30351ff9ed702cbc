"""Anthropic Messages API stream adapter."""

from __future__ import annotations

import logging

from ..types import UsageReport
from .base import StreamAdapter

logger = logging.getLogger(__name__)

_STOP_REASONS = {"max_tokens": "length", "end_turn": "stop", "tool_use": "tool_calls"}


def _input_tokens(usage: dict) -> int:
    return (
        int(usage.get("input_tokens") or 0)
        + int(usage.get("cache_creation_input_tokens") or 0)
        + int(usage.get("cache_read_input_tokens") or 0)
    )


class AnthropicAdapter(StreamAdapter):
    """``message_start`` / ``content_block_*`` / ``message_delta`` events.

    Tool input JSON is concatenated per block and handed to the reporter
    at ``content_block_stop``.  Thinking signatures are buffered and
    attached to the chain when the thinking block stops.
    """

    sdk_mode = "anthropic"
    auth_header = "x-api-key"
    auth_scheme = ""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._blocks: dict[int, str] = {}
        self._tool_json: dict[int, str] = {}
        self._input_tokens = 0
        self._cached_tokens: int | None = None
        self._output_tokens = 0
        self._usage_raw: dict = {}

    @property
    def name(self) -> str:
        return "anthropic"

    def handle_event(self, event_type: str, event: dict) -> None:
        etype = event.get("type") or event_type

        if etype == "message_start":
            message = event.get("message") or {}
            if isinstance(message.get("id"), str):
                self.reporter.set_response_id(message["id"])
            usage = message.get("usage") or {}
            self._input_tokens = _input_tokens(usage)
            cached = usage.get("cache_read_input_tokens")
            self._cached_tokens = int(cached) if cached is not None else None
            self._output_tokens = int(usage.get("output_tokens") or 0)
            self._usage_raw = dict(usage)
            self._record_usage()

        elif etype == "content_block_start":
            index = int(event.get("index") or 0)
            block = event.get("content_block") or {}
            btype = block.get("type", "")
            self._blocks[index] = btype
            if btype in ("tool_use", "server_tool_use"):
                self._tool_json[index] = ""
                self.reporter.accumulate_tool_call(index, block.get("id"), block.get("name"))
            elif btype == "thinking":
                self.reporter.buffer_thinking(block.get("thinking") or "")
            elif btype == "redacted_thinking":
                self.reporter.report_encrypted_thinking(f"redacted_{index}", block.get("data") or "")
            elif btype == "text":
                self.reporter.report_text(block.get("text") or "")

        elif etype == "content_block_delta":
            index = int(event.get("index") or 0)
            delta = event.get("delta") or {}
            dtype = delta.get("type")
            if dtype == "text_delta":
                self.reporter.report_text(delta.get("text") or "")
            elif dtype == "input_json_delta":
                if index in self._tool_json:
                    self._tool_json[index] += delta.get("partial_json") or ""
            elif dtype == "thinking_delta":
                self.reporter.buffer_thinking(delta.get("thinking") or "")
            elif dtype == "signature_delta":
                self.reporter.buffer_signature(delta.get("signature") or "")

        elif etype == "content_block_stop":
            index = int(event.get("index") or 0)
            btype = self._blocks.pop(index, "")
            if index in self._tool_json:
                self.reporter.accumulate_tool_call(index, args_fragment=self._tool_json.pop(index) or "{}")
            elif btype == "thinking":
                self.reporter.close_thinking_chain()

        elif etype == "message_delta":
            usage = event.get("usage") or {}
            if usage.get("input_tokens") is not None:
                self._input_tokens = _input_tokens(usage)
            if usage.get("output_tokens") is not None:
                self._output_tokens = int(usage["output_tokens"])
            self._usage_raw.update(usage)
            self._record_usage()
            stop_reason = (event.get("delta") or {}).get("stop_reason")
            if stop_reason:
                logger.debug("[%s] Stop reason: %s", self.meta.display_name, stop_reason)
                self.finish_reason = _STOP_REASONS.get(stop_reason, stop_reason)

        elif etype == "error":
            err = event.get("error") or {}
            self.fail(err.get("message") or "Anthropic stream error", err.get("type"))

        elif etype not in ("message_stop", "ping"):
            logger.debug("[%s] Ignoring event %s", self.meta.display_name, etype)

    def _record_usage(self) -> None:
        self.reporter.record_usage(UsageReport(
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            cached_tokens=self._cached_tokens,
            raw=dict(self._usage_raw),
        ))
