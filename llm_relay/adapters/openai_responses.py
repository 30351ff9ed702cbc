"""OpenAI Responses-API event adapter and continuation request planning."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Sequence

from ..core.continuity import find_marker
from ..types import ChatMessage, RequestPlan, UsageReport
from .base import StreamAdapter

logger = logging.getLogger(__name__)


def parse_responses_usage(usage: dict) -> UsageReport:
    details = usage.get("input_tokens_details") or {}
    cached = details.get("cached_tokens") if isinstance(details, dict) else None
    return UsageReport(
        input_tokens=int(usage.get("input_tokens") or 0),
        output_tokens=int(usage.get("output_tokens") or 0),
        cached_tokens=int(cached) if cached is not None else None,
        raw=usage,
    )


def uses_response_expiry(model_id: str, provider: str) -> bool:
    """Doubao/Volcengine continue via ``previous_response_id`` with explicit expiry."""
    return "doubao" in model_id.lower() or provider == "volcengine"


class OpenAIResponsesAdapter(StreamAdapter):
    """Typed ``response.*`` events.

    Gateways differ in which of delta/done/output_item events they send, so
    tool calls are tracked per item id and emitted once whichever event
    delivers them first; a final ``done`` text is used only when no delta
    arrived.
    """

    sdk_mode = "openai-responses"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.prompt_cache_key: str | None = None
        self.output: list[dict] = []
        self._completed = False
        self._text_delta_seen = False
        self._summary_seen = False
        self._tool_buffers: dict[int, dict] = {}
        self._completed_indices: set[int] = set()
        self._index_by_id: dict[str, int] = {}
        self._next_index = 0

    @property
    def name(self) -> str:
        return "openai-responses"

    # -- request planning --------------------------------------------------

    def plan_request(
        self,
        history: Sequence[ChatMessage],
        *,
        caching_enabled: bool = False,
        reasoning_requested: bool = False,
        now_ms: int | None = None,
    ) -> RequestPlan:
        """Decide session id, continuation, and truncation for the next request.

        Also adopts the chosen session id and expiry so the marker emitted
        at the end of this response carries them.
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        model_id = self.meta.model_id
        expiring = uses_response_expiry(model_id, self.meta.provider)

        match = find_marker(history, self.sdk_mode, model_id)
        marker = match.marker if match else None
        cache_hit = None
        if marker is None and self.matcher is not None:
            cache_hit = self.matcher.find_continuation(history)

        session_id = (
            (marker.session_id if marker else None)
            or (cache_hit.prompt_cache_key if cache_hit else None)
            or self.meta.session_id
            or str(uuid.uuid4())
        )
        plan = RequestPlan(session_id=session_id, messages=list(history))

        if "gpt" in model_id.lower() and not expiring and reasoning_requested:
            plan.body["include"] = ["reasoning.encrypted_content"]

        if expiring:
            if caching_enabled:
                cfg = self.config.continuity
                margin_ms = int(cfg.expiry_margin_seconds * 1000)
                if (
                    marker is not None
                    and marker.response_id
                    and marker.expire_at
                    and now_ms < marker.expire_at - margin_ms
                ):
                    plan.previous_response_id = marker.response_id
                    plan.body["previous_response_id"] = marker.response_id
                    plan.expire_at = marker.expire_at
                    plan.include_tools = False
                    if 0 <= match.index < len(history) - 1:
                        plan.messages = list(history[match.index + 1:])
                        plan.marker_index = match.index
                    logger.debug(
                        "[%s] Continuing from %s, sending %d of %d messages",
                        self.meta.display_name, marker.response_id, len(plan.messages), len(history),
                    )
                else:
                    plan.expire_at = now_ms + int(cfg.session_ttl_seconds * 1000)
                    plan.body["expire_at"] = plan.expire_at // 1000
                    logger.debug("[%s] No live cached response; new expire_at set", self.meta.display_name)
        else:
            plan.body["prompt_cache_key"] = session_id

        plan.headers = {"session_id": session_id, "conversation_id": session_id}

        self.meta.session_id = session_id
        self.meta.expire_at = plan.expire_at
        self.reporter.session_id = session_id
        self.prompt_cache_key = plan.body.get("prompt_cache_key")
        logger.info("[%s] Using session_id %s", self.meta.display_name, session_id)
        return plan

    # -- tool-call bookkeeping ---------------------------------------------

    def _tool_index(self, item_id: str) -> int:
        if item_id not in self._index_by_id:
            self._index_by_id[item_id] = self._next_index
            self._next_index += 1
        return self._index_by_id[item_id]

    def _item_index(self, item: dict) -> int:
        """Index for a function_call item, reachable by its item id and its call_id."""
        keys = [k for k in (item.get("id"), item.get("call_id")) if isinstance(k, str) and k]
        known = next((self._index_by_id[k] for k in keys if k in self._index_by_id), None)
        idx = known if known is not None else self._tool_index(keys[0])
        for key in keys:
            self._index_by_id[key] = idx
        return idx

    def _emit_tool_call(self, idx: int, call_id: str, name: str, args: str) -> None:
        try:
            parsed = json.loads(args or "{}")
        except json.JSONDecodeError as e:
            logger.warning("[%s] Cannot parse tool call arguments %.200s: %s", self.meta.display_name, args, e)
            return
        self.reporter.report_tool_call(call_id, name, parsed)
        self._completed_indices.add(idx)

    # -- events ------------------------------------------------------------

    def handle_event(self, event_type: str, event: dict) -> None:
        etype = event.get("type") or event_type
        handler = self._HANDLERS.get(etype)
        if handler is None:
            logger.debug("[%s] Ignoring event %s", self.meta.display_name, etype)
            return
        if "type" not in event:
            event = {**event, "type": etype}
        handler(self, event)

    def _on_created(self, event: dict) -> None:
        response = event.get("response") or {}
        if isinstance(response.get("id"), str):
            self.reporter.set_response_id(response["id"])

    def _on_text_delta(self, event: dict) -> None:
        delta = event.get("delta")
        if isinstance(delta, str) and delta:
            self.reporter.report_text(delta)
            self._text_delta_seen = True

    def _on_text_done(self, event: dict) -> None:
        if self._text_delta_seen:
            return
        text = event.get("text") or ""
        if text:
            self.reporter.report_text(text)

    def _on_refusal_delta(self, event: dict) -> None:
        delta = event.get("delta")
        if isinstance(delta, str) and delta:
            self.reporter.report_text(delta)

    def _on_reasoning_delta(self, event: dict) -> None:
        if event.get("type", "").startswith("response.reasoning_summary"):
            self._summary_seen = True
        delta = event.get("delta")
        if isinstance(delta, str) and delta:
            self.reporter.buffer_thinking(delta)

    def _on_reasoning_done(self, event: dict) -> None:
        if event.get("type", "").startswith("response.reasoning_summary"):
            self._summary_seen = True
        text = event.get("text")
        if text:
            self.reporter.buffer_thinking_if_not_delta(text)
        self.reporter.close_thinking_chain()

    def _on_summary_part_done(self, event: dict) -> None:
        self._summary_seen = True

    def _on_arguments_done(self, event: dict) -> None:
        item_id = event.get("item_id")
        if not item_id:
            return
        idx = self._tool_index(item_id)
        if idx in self._completed_indices:
            return
        buf = self._tool_buffers.get(idx)
        if buf is None:
            logger.warning("[%s] Arguments done for unknown tool item %s", self.meta.display_name, item_id)
            return
        if not buf["name"]:
            logger.warning("[%s] Tool item %s has no name", self.meta.display_name, item_id)
            return
        buf["args"] = event.get("arguments") or ""
        self._emit_tool_call(idx, buf["id"], buf["name"], buf["args"])

    def _on_item_added(self, event: dict) -> None:
        item = event.get("item") or {}
        if item.get("type") != "function_call" or not item.get("id"):
            return
        item_id = item["id"]
        call_id = item.get("call_id") or item_id
        idx = self._item_index(item)
        if idx in self._completed_indices:
            return

        buf = self._tool_buffers.setdefault(idx, {"id": call_id, "name": "", "args": ""})
        buf["id"] = call_id
        if item.get("name"):
            buf["name"] = item["name"]
        if item.get("arguments"):
            buf["args"] = item["arguments"]
        if buf["name"] and buf["args"]:
            self._emit_tool_call(idx, call_id, buf["name"], buf["args"])

    def _on_item_done(self, event: dict) -> None:
        item = event.get("item") or {}
        itype = item.get("type")
        if itype == "reasoning":
            encrypted = item.get("encrypted_content")
            if encrypted:
                summary = None
                if not self._summary_seen:
                    summary = [s.get("text", "") for s in item.get("summary") or [] if isinstance(s, dict)]
                self.reporter.report_encrypted_thinking(item.get("id") or "", encrypted, summary)
        elif itype == "function_call":
            call_id = item.get("call_id") or item.get("id")
            name = item.get("name") if isinstance(item.get("name"), str) else ""
            args = item.get("arguments") if isinstance(item.get("arguments"), str) else ""
            if not call_id or not name or not args:
                return
            idx = self._item_index(item)
            if idx in self._completed_indices:
                return
            self._emit_tool_call(idx, call_id, name, args)

    def _on_completed(self, event: dict) -> None:
        response = event.get("response") or {}
        usage = response.get("usage")
        if isinstance(usage, dict):
            self.reporter.record_usage(parse_responses_usage(usage))
        if isinstance(response.get("id"), str):
            self.reporter.set_response_id(response["id"])

        output = response.get("output")
        if isinstance(output, list):
            self.output = [item for item in output if isinstance(item, dict)]
            for item in self.output:
                if item.get("type") != "function_call" or not item.get("id") or not item.get("name"):
                    continue
                idx = self._item_index(item)
                if idx in self._completed_indices:
                    continue
                call_id = item.get("call_id") or item["id"]
                self._emit_tool_call(idx, call_id, item["name"], item.get("arguments") or "")

        if event.get("type") == "response.incomplete":
            reason = (response.get("incomplete_details") or {}).get("reason")
            self.finish_reason = "length" if reason == "max_output_tokens" else reason
        else:
            self.finish_reason = response.get("status") or "completed"
        self._completed = True

    def _on_failed(self, event: dict) -> None:
        err = (event.get("response") or {}).get("error") or {}
        self.fail(err.get("message") or "Response failed", err.get("code"))

    def _on_error(self, event: dict) -> None:
        err = event.get("error") if isinstance(event.get("error"), dict) else event
        self.fail(err.get("message") or str(event), err.get("code"))

    _HANDLERS = {
        "response.created": _on_created,
        "response.output_text.delta": _on_text_delta,
        "response.output_text.done": _on_text_done,
        "response.refusal.delta": _on_refusal_delta,
        "response.reasoning_text.delta": _on_reasoning_delta,
        "response.reasoning_text.done": _on_reasoning_done,
        "response.reasoning_summary_text.delta": _on_reasoning_delta,
        "response.reasoning_summary_text.done": _on_reasoning_done,
        "response.reasoning_summary_part.done": _on_summary_part_done,
        "response.function_call_arguments.done": _on_arguments_done,
        "response.output_item.added": _on_item_added,
        "response.output_item.done": _on_item_done,
        "response.completed": _on_completed,
        "response.incomplete": _on_completed,
        "response.failed": _on_failed,
        "error": _on_error,
    }

    # -- completion --------------------------------------------------------

    def finish(self) -> None:
        with_marker = self._completed and bool(self.reporter.response_id)
        self.reporter.flush_all(self.finish_reason, with_marker=with_marker, expire_at=self.meta.expire_at)

    def save_continuation(self) -> None:
        if self.matcher is None or not self.reporter.response_id or not self._completed:
            return
        self.matcher.save_response(self.reporter.response_id, self.output, self.prompt_cache_key)
