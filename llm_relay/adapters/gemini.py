"""Gemini-style HTTP stream adapter.

Accepts standard SSE ``data: {json}`` lines as well as bare JSON lines
from gateways that drop the SSE prefix.  Only the first candidate is
rendered.
"""

from __future__ import annotations

import logging
import time
import uuid

from ..types import LLMProviderError, UsageReport
from .base import StreamAdapter

logger = logging.getLogger(__name__)

_FINISH_REASONS = {"MAX_TOKENS": "length", "STOP": "stop"}


def parse_gemini_usage(usage: dict) -> UsageReport:
    cached = usage.get("cachedContentTokenCount")
    return UsageReport(
        input_tokens=int(usage.get("promptTokenCount") or 0),
        output_tokens=int(usage.get("candidatesTokenCount") or 0) + int(usage.get("thoughtsTokenCount") or 0),
        cached_tokens=int(cached) if cached is not None else None,
        raw=usage,
    )


def new_tool_call_id() -> str:
    return f"tool_call_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class GeminiAdapter(StreamAdapter):
    sdk_mode = "gemini"
    framing = "lines"
    auth_header = "x-goog-api-key"
    auth_scheme = ""

    @property
    def name(self) -> str:
        return "gemini"

    def handle_event(self, event_type: str, event: dict) -> None:
        err = event.get("error")
        if isinstance(err, dict) and err.get("message"):
            raise LLMProviderError(
                err["message"],
                provider=self.meta.provider,
                status_code=err.get("code") if isinstance(err.get("code"), int) else None,
                error_code=err.get("status"),
            )

        if isinstance(event.get("responseId"), str):
            self.reporter.set_response_id(event["responseId"])

        output_thinking = self.config.output_thinking
        candidates = event.get("candidates")
        candidate = candidates[0] if isinstance(candidates, list) and candidates else {}
        if not isinstance(candidate, dict):
            candidate = {}
        content = candidate.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None

        for part in parts if isinstance(parts, list) else []:
            if not isinstance(part, dict):
                continue
            signature = part.get("thoughtSignature")
            if isinstance(signature, str) and signature and output_thinking:
                self.reporter.set_thought_signature(signature)

            text = part.get("text")
            if part.get("thought") is True and isinstance(text, str) and text:
                if output_thinking:
                    self.reporter.buffer_thinking(text)
                continue

            if isinstance(text, str) and text:
                self.reporter.report_text(text)
                continue

            call = part.get("functionCall")
            if isinstance(call, dict) and isinstance(call.get("name"), str) and call["name"]:
                args = call.get("args") if isinstance(call.get("args"), dict) else {}
                self.reporter.report_tool_call(call.get("id") or new_tool_call_id(), call["name"], args)

        finish = candidate.get("finishReason")
        if finish:
            self.finish_reason = _FINISH_REASONS.get(finish, str(finish).lower())

        usage = event.get("usageMetadata")
        if isinstance(usage, dict):
            self.reporter.record_usage(parse_gemini_usage(usage))
