"""StreamReporter: canonical event state machine shared by every adapter.

Adapters call into the reporter with vendor-neutral operations; the
reporter owns buffering, thinking-chain lifecycle, tool-call reassembly,
and the end-of-stream flush sequence.  Ordering invariant: an open
thinking chain is always closed before any text or tool-call event.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass

from ..types import (
    ChatMessage,
    ContentEvent,
    ContinuityMarker,
    ContinuityPayload,
    DataPart,
    EncryptedThinking,
    ProgressSink,
    ReporterConfig,
    RequestMeta,
    TextDelta,
    TextPart,
    ThinkingDelta,
    ThinkingEnd,
    ThinkingPart,
    ToolCallComplete,
    ToolCallPart,
    ToolCallStart,
    UsageReport,
)
from .continuity import encode_marker

logger = logging.getLogger(__name__)


@dataclass
class ToolCallBuffer:
    id: str | None = None
    name: str | None = None
    arguments: str = ""


def deduplicate_tool_args(existing: str, fragment: str) -> str:
    """Merge an argument fragment, tolerating gateways that resend text.

    1. ``existing`` already ends with ``fragment``: exact repeat, discard.
    2. ``fragment`` starts with a non-empty ``existing``: cumulative resend,
       replace.
    3. Otherwise append.
    """
    if existing.endswith(fragment):
        return existing
    if existing and fragment.startswith(existing):
        return fragment
    return existing + fragment


def new_chain_id() -> str:
    return f"thinking_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class EventCollector:
    """ProgressSink that keeps every event in a list."""

    def __init__(self) -> None:
        self.events: list[ContentEvent] = []

    def report(self, event: ContentEvent) -> None:
        self.events.append(event)

    def of_type(self, cls: type) -> list:
        return [e for e in self.events if isinstance(e, cls)]

    @property
    def text(self) -> str:
        return "".join(e.text for e in self.events if isinstance(e, TextDelta))

    @property
    def thinking(self) -> str:
        return "".join(e.text for e in self.events if isinstance(e, ThinkingDelta))


class StreamReporter:
    """Turns adapter calls into an ordered canonical event stream.

    One instance per in-flight response.  Not thread-safe; all calls come
    from the task reading that response's stream.
    """

    def __init__(
        self,
        meta: RequestMeta,
        sink: ProgressSink,
        sdk_mode: str,
        config: ReporterConfig | None = None,
    ) -> None:
        self.meta = meta
        self.sdk_mode = sdk_mode
        self._sink = sink
        self._config = config or ReporterConfig()
        self._name = meta.display_name

        self.session_id: str = meta.session_id or str(uuid.uuid4())
        self.response_id: str | None = None

        self._has_content = False
        self._has_thinking = False
        self._thinking_delta_seen = False
        self._text_delta_seen = False
        self._finished = False

        self._chain_id: str | None = None
        self._thinking_buffer = ""
        self._text_buffer = ""
        self._signature_buffer = ""
        self._thought_signature: str | None = None

        self._tool_calls: dict[int, ToolCallBuffer] = {}
        self._completed_tools: dict[int, str] = {}
        self._usage: UsageReport | None = None

        self._transcript: list = []

    # -- properties --------------------------------------------------------

    @property
    def has_content(self) -> bool:
        """True once any text or tool call has been reported."""
        return self._has_content

    @property
    def thinking_chain_open(self) -> bool:
        return self._chain_id is not None

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def text_delta_seen(self) -> bool:
        return self._text_delta_seen

    @property
    def usage(self) -> UsageReport | None:
        return self._usage

    def set_response_id(self, response_id: str) -> None:
        """Record the upstream response id.  First writer wins."""
        if response_id and not self.response_id:
            self.response_id = response_id

    # -- emission ----------------------------------------------------------

    def _emit(self, event: ContentEvent) -> None:
        self._record(event)
        try:
            self._sink.report(event)
        except Exception:
            logger.exception("[%s] Progress sink rejected %s", self._name, type(event).__name__)

    def _record(self, event: ContentEvent) -> None:
        last = self._transcript[-1] if self._transcript else None
        if isinstance(event, TextDelta):
            if isinstance(last, TextPart):
                last.text += event.text
            else:
                self._transcript.append(TextPart(event.text))
        elif isinstance(event, ThinkingDelta):
            if isinstance(last, ThinkingPart) and last.chain_id == event.chain_id:
                last.text += event.text
            else:
                self._transcript.append(ThinkingPart(event.text, chain_id=event.chain_id))
        elif isinstance(event, ThinkingEnd):
            if event.signature and isinstance(last, ThinkingPart) and last.chain_id == event.chain_id:
                last.signature = event.signature
        elif isinstance(event, ToolCallComplete):
            self._transcript.append(ToolCallPart(event.call_id, event.name, event.args))
        elif isinstance(event, ContinuityPayload):
            self._transcript.append(DataPart(event.data, event.mime_type))

    def transcript(self) -> ChatMessage:
        """The response so far as an assistant message."""
        return ChatMessage(role="assistant", content=list(self._transcript))

    # -- thinking chain ----------------------------------------------------

    def open_thinking_chain(self) -> str:
        if self._chain_id is None:
            self._chain_id = new_chain_id()
            logger.debug("[%s] Opened thinking chain %s", self._name, self._chain_id)
        return self._chain_id

    def close_thinking_chain(self) -> None:
        """Flush buffered thinking and end the open chain, attaching any signature."""
        self.flush_thinking()
        if self._chain_id is None:
            if self._signature_buffer:
                logger.debug("[%s] Dropping signature with no open thinking chain", self._name)
                self._signature_buffer = ""
            return
        signature = self._signature_buffer or None
        self._signature_buffer = ""
        self._emit(ThinkingEnd(self._chain_id, signature=signature))
        logger.debug("[%s] Closed thinking chain %s", self._name, self._chain_id)
        self._chain_id = None

    def buffer_thinking(self, delta: str) -> None:
        if not delta:
            return
        chain_id = self.open_thinking_chain()
        self._thinking_buffer += delta
        self._has_thinking = True
        self._thinking_delta_seen = True
        if len(self._thinking_buffer) >= self._config.thinking_buffer_length:
            self._emit(ThinkingDelta(self._thinking_buffer, chain_id))
            self._thinking_buffer = ""

    def buffer_thinking_if_not_delta(self, text: str) -> None:
        """Fallback for a final full reasoning text; ignored once deltas were seen."""
        if self._thinking_delta_seen:
            return
        self.buffer_thinking(text)

    def flush_thinking(self) -> None:
        if self._thinking_buffer and self._chain_id:
            self._emit(ThinkingDelta(self._thinking_buffer, self._chain_id))
        self._thinking_buffer = ""

    def buffer_signature(self, fragment: str) -> None:
        self._signature_buffer += fragment

    def flush_signature(self) -> None:
        """Emit the buffered signature by ending the chain it belongs to."""
        if self._signature_buffer:
            self.close_thinking_chain()

    def set_thought_signature(self, signature: str) -> None:
        """Hold a signature to be emitted ahead of the next tool call."""
        self._thought_signature = signature

    def _emit_thought_signature(self) -> None:
        if self._thought_signature:
            self._emit(ThinkingEnd(None, signature=self._thought_signature))
            self._thought_signature = None

    def report_encrypted_thinking(
        self, item_id: str, data: str, summary: list[str] | None = None,
    ) -> None:
        self.close_thinking_chain()
        self._has_thinking = True
        self._emit(EncryptedThinking(item_id, data, tuple(summary) if summary else None))

    # -- text --------------------------------------------------------------

    def report_text(self, delta: str) -> None:
        if not delta:
            return
        self.close_thinking_chain()
        self._text_buffer += delta
        self._has_content = True
        self._text_delta_seen = True
        if len(self._text_buffer) >= self._config.text_buffer_length:
            self._emit(TextDelta(self._text_buffer))
            self._text_buffer = ""

    def flush_text(self) -> None:
        if self._text_buffer:
            self._emit(TextDelta(self._text_buffer))
        self._text_buffer = ""

    # -- tool calls --------------------------------------------------------

    def report_tool_call(self, call_id: str, name: str, args) -> None:
        """Report a tool call the vendor delivered whole."""
        self.close_thinking_chain()
        self.flush_text()
        self._emit_thought_signature()
        self._emit(ToolCallComplete(call_id, name, args))
        self._has_content = True
        logger.info("[%s] Tool call %s (%s)", self._name, name, call_id)

    def accumulate_tool_call(
        self,
        index: int,
        call_id: str | None = None,
        name: str | None = None,
        args_fragment: str | None = None,
    ) -> None:
        """Merge a streamed tool-call fragment and complete it once args parse."""
        if not call_id and not name and not args_fragment:
            return

        buf = self._tool_calls.get(index)
        if buf is None:
            done_id = self._completed_tools.get(index)
            if index in self._completed_tools and (not call_id or call_id == done_id):
                logger.debug("[%s] Ignoring fragment for completed tool call %d", self._name, index)
                return
            self.close_thinking_chain()
            self.flush_text()
            buf = ToolCallBuffer()
            self._tool_calls[index] = buf
            self._emit(ToolCallStart(index))
            logger.debug("[%s] Tool call started: %s (index %d)", self._name, name or "unknown", index)

        if call_id:
            buf.id = call_id
        if name:
            buf.name = name
        if args_fragment:
            buf.arguments = deduplicate_tool_args(buf.arguments, args_fragment)

        if buf.name and buf.arguments:
            try:
                args = json.loads(buf.arguments)
            except json.JSONDecodeError:
                return
            self.complete_tool_call(index, args)

    def complete_tool_call(self, index: int, args) -> None:
        # reasoning or text may have arrived between this call's fragments
        self.close_thinking_chain()
        self.flush_text()
        buf = self._tool_calls.pop(index)
        call_id = buf.id or str(uuid.uuid4())
        self._completed_tools[index] = call_id
        self._emit_thought_signature()
        self._emit(ToolCallComplete(call_id, buf.name or "", args))
        self._has_content = True
        logger.info("[%s] Tool call %s (%s)", self._name, buf.name, call_id)

    def _flush_tool_calls(self) -> None:
        for index, buf in list(self._tool_calls.items()):
            if not buf.name:
                logger.warning(
                    "[%s] Incomplete tool call [%d]: no name, args_length=%d",
                    self._name, index, len(buf.arguments),
                )
                del self._tool_calls[index]
                continue
            try:
                args = json.loads(buf.arguments or "{}")
            except json.JSONDecodeError as e:
                logger.error("[%s] Cannot parse tool call arguments for %s: %s", self._name, buf.name, e)
                del self._tool_calls[index]
                continue
            self.complete_tool_call(index, args)

    # -- usage -------------------------------------------------------------

    def record_usage(self, usage: UsageReport) -> None:
        """Keep the latest usage figures; emitted once at flush."""
        self._usage = usage

    # -- end of stream -----------------------------------------------------

    def flush_all(
        self,
        finish_reason: str | None = None,
        *,
        with_marker: bool = False,
        expire_at: int | None = None,
    ) -> bool:
        """Drain all buffers in canonical order.  Returns ``has_content``.

        A second call emits nothing.
        """
        if self._finished:
            return self._has_content
        self._finished = True
        if finish_reason:
            logger.debug("[%s] Stream finished: %s", self._name, finish_reason)

        if finish_reason == "length":
            if self._thinking_buffer:
                logger.debug(
                    "[%s] Dropping %d chars of truncated thinking",
                    self._name, len(self._thinking_buffer),
                )
            self._thinking_buffer = ""
        else:
            self.flush_thinking()
        self.close_thinking_chain()
        self.flush_text()

        if self._tool_calls:
            logger.warning(
                "[%s] %d tool call(s) still buffered at end of stream",
                self._name, len(self._tool_calls),
            )
            self._flush_tool_calls()

        if self._has_thinking and not self._has_content:
            self._emit(TextDelta(self._config.placeholder_text))
            logger.warning("[%s] Response had only thinking; emitted placeholder text", self._name)

        if self._usage is not None:
            self._emit(self._usage)

        if with_marker:
            self._emit_marker(expire_at)

        return self._has_content

    def _emit_marker(self, expire_at: int | None) -> None:
        if not self.response_id:
            logger.debug("[%s] No response id; continuity marker skipped", self._name)
            return
        marker = ContinuityMarker(
            provider=self.meta.provider,
            model_id=self.meta.model_id,
            sdk_mode=self.sdk_mode,
            session_id=self.session_id,
            response_id=self.response_id,
            expire_at=expire_at,
        )
        self._emit(ContinuityPayload(encode_marker(self.meta.model_id, marker)))
        logger.debug(
            "[%s] Continuity marker: session=%s response=%s",
            self._name, self.session_id, self.response_id,
        )
