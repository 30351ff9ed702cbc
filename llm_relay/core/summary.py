"""Response summaries: compact per-item digests used for continuation matching."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import NamedTuple

from ..types import (
    ChatMessage,
    ResponseSummary,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolResultPart,
)

logger = logging.getLogger(__name__)

TEXT_LIMIT = 200

_ROLES = {"user": "user", "assistant": "assistant"}


class SummaryLine(NamedTuple):
    role: str
    kind: str
    payload: str
    raw: str


def parse_line(line: str) -> SummaryLine | None:
    """Split ``role:kind:payload``.  Payload may itself contain colons."""
    parts = line.split(":", 2)
    if len(parts) < 2:
        return None
    payload = parts[2] if len(parts) == 3 else ""
    return SummaryLine(parts[0], parts[1], payload, line)


def _join(value) -> str:
    if isinstance(value, list):
        return "".join(v if isinstance(v, str) else json.dumps(v) for v in value)
    return value or ""


def summarize_message(message: ChatMessage, text_limit: int = TEXT_LIMIT) -> ResponseSummary:
    """One line per part.  Data parts and other non-content parts are skipped."""
    role = _ROLES.get(message.role, "system")
    lines: list[str] = []
    for part in message.content:
        if isinstance(part, ToolCallPart):
            lines.append(f"{role}:tool_call:{part.call_id}:{part.name}")
        elif isinstance(part, ToolResultPart):
            lines.append(f"{role}:tool_result:{part.call_id}:{len(part.content or [])}")
        elif isinstance(part, TextPart):
            lines.append(f"{role}:text:{_join(part.text)[:text_limit]}")
        elif isinstance(part, ThinkingPart):
            lines.append(f"{role}:thinking:{_join(part.text)[:text_limit]}")
    return ResponseSummary(tuple(lines))


def summarize_response_output(
    output: Sequence[dict],
    last_n: int = 3,
    text_limit: int = TEXT_LIMIT,
) -> ResponseSummary:
    """Summarize the last *last_n* items of a Responses-API ``output`` array."""
    lines: list[str] = []
    for item in list(output)[-last_n:] if last_n > 0 else []:
        if not isinstance(item, dict):
            continue
        itype = item.get("type")
        if itype == "function_call" and item.get("id") and item.get("name"):
            call_id = item.get("call_id") or item["id"]
            lines.append(f"assistant:tool_call:{call_id}:{item['name']}")
        elif itype == "message":
            content = item.get("content")
            text = ""
            if isinstance(content, list):
                for block in content:
                    if isinstance(block, dict) and block.get("type") == "output_text":
                        text += block.get("text") or ""
            elif isinstance(content, str):
                text = content
            lines.append(f"assistant:text:{text[:text_limit]}")
        elif itype == "reasoning":
            text = _join(item.get("content"))
            lines.append(f"assistant:thinking:{text[:text_limit]}")
    logger.debug("Response summary: %s", lines)
    return ResponseSummary(tuple(lines))
