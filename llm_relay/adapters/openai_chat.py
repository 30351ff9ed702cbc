"""OpenAI-compatible chat-completions SSE adapter."""

from __future__ import annotations

import logging

from ..types import UsageReport
from .base import StreamAdapter

logger = logging.getLogger(__name__)


def parse_chat_usage(usage: dict) -> UsageReport:
    details = usage.get("prompt_tokens_details") or {}
    cached = details.get("cached_tokens") if isinstance(details, dict) else None
    return UsageReport(
        input_tokens=int(usage.get("prompt_tokens") or 0),
        output_tokens=int(usage.get("completion_tokens") or 0),
        cached_tokens=int(cached) if cached is not None else None,
        raw=usage,
    )


class OpenAIChatAdapter(StreamAdapter):
    """``data: {chunk}`` lines terminated by ``data: [DONE]``.

    Reasoning arrives as ``delta.reasoning_content`` (``delta.reasoning``
    on some gateways); tool calls as indexed fragments that may be resent.
    """

    sdk_mode = "openai"

    @property
    def name(self) -> str:
        return "openai"

    def handle_event(self, event_type: str, chunk: dict) -> None:
        err = chunk.get("error")
        if err:
            message = err.get("message") if isinstance(err, dict) else str(err)
            self.fail(message or "Upstream stream error")
            return

        chunk_id = chunk.get("id")
        if isinstance(chunk_id, str):
            self.reporter.set_response_id(chunk_id)

        usage = chunk.get("usage")
        if isinstance(usage, dict):
            self.reporter.record_usage(parse_chat_usage(usage))

        for choice in chunk.get("choices") or []:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta") or {}

            reasoning = delta.get("reasoning_content") or delta.get("reasoning")
            if isinstance(reasoning, str):
                self.reporter.buffer_thinking(reasoning)

            content = delta.get("content")
            if isinstance(content, str):
                self.reporter.report_text(content)

            tool_calls = delta.get("tool_calls")
            if isinstance(tool_calls, list):
                for tc in tool_calls:
                    if not isinstance(tc, dict):
                        continue
                    fn = tc.get("function") or {}
                    index = tc.get("index")
                    self.reporter.accumulate_tool_call(
                        index if isinstance(index, int) else 0,
                        tc.get("id"),
                        fn.get("name"),
                        fn.get("arguments"),
                    )

            finish_reason = choice.get("finish_reason")
            if finish_reason:
                self.finish_reason = finish_reason
