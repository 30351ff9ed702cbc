"""Adapter base class, stream framing, and the shared stream loop."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable
from typing import NamedTuple

from ..core.cancellation import CancelToken, iter_until_cancelled
from ..core.matcher import ContinuationMatcher
from ..core.reporter import StreamReporter
from ..types import (
    LLMProviderError,
    ProgressSink,
    RelayConfig,
    RequestMeta,
    StreamCancelled,
    UsageSink,
)
from ..usage import notify_actual

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

class Frame(NamedTuple):
    event: str
    data: str


def parse_sse_events(buf: bytes) -> tuple[list[Frame], bytes]:
    """Split a byte buffer into complete SSE events.

    Returns ``(frames, remainder)``.  Handles both ``\\r\\n\\r\\n`` and
    ``\\n\\n`` boundaries; multiple ``data:`` lines in one event are joined
    with newlines.
    """
    frames: list[Frame] = []
    while True:
        idx_rn = buf.find(b"\r\n\r\n")
        idx_n = buf.find(b"\n\n")
        if idx_rn == -1 and idx_n == -1:
            break
        if idx_rn != -1 and (idx_n == -1 or idx_rn <= idx_n):
            end = idx_rn + 4
        else:
            end = idx_n + 2

        raw_event = buf[:end]
        buf = buf[end:]

        decoded = raw_event.decode("utf-8", errors="replace")
        event_type = ""
        data_lines: list[str] = []
        for line in decoded.split("\n"):
            line = line.rstrip("\r")
            if line.startswith("event:"):
                event_type = line[6:].strip()
            elif line.startswith("data:"):
                data_lines.append(line[5:].lstrip(" "))

        if data_lines:
            frames.append(Frame(event_type, "\n".join(data_lines)))

    return frames, buf


class SseFramer:
    """Incremental SSE event splitter."""

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, chunk: bytes) -> list[Frame]:
        self._buf += chunk
        frames, self._buf = parse_sse_events(self._buf)
        return frames

    def close(self) -> list[Frame]:
        remaining, self._buf = self._buf, b""
        if not remaining.strip():
            return []
        frames, _ = parse_sse_events(remaining + b"\n\n")
        return frames


class LineFramer:
    """Incremental line splitter for ``data:`` lines or bare JSON lines."""

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, chunk: bytes) -> list[Frame]:
        self._buf += chunk
        *lines, self._buf = self._buf.split(b"\n")
        return [f for f in (self._frame(line) for line in lines) if f is not None]

    def close(self) -> list[Frame]:
        remaining, self._buf = self._buf, b""
        frame = self._frame(remaining)
        return [frame] if frame is not None else []

    @staticmethod
    def _frame(raw: bytes) -> Frame | None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line or line.startswith(":") or line.startswith("event:"):
            return None
        if line.startswith("data:"):
            line = line[5:].strip()
        return Frame("", line) if line else None


# ---------------------------------------------------------------------------
# ABC
# ---------------------------------------------------------------------------

class StreamAdapter(ABC):
    """Strategy interface for one vendor wire protocol.

    One instance per in-flight response.  Subclasses implement
    :meth:`handle_event`; the frame loop, error capture, cancellation,
    and flush sequencing are shared.
    """

    sdk_mode: str = ""
    framing: str = "sse"
    auth_header: str = "Authorization"
    auth_scheme: str = "Bearer "

    def __init__(
        self,
        meta: RequestMeta,
        sink: ProgressSink,
        *,
        config: RelayConfig | None = None,
        matcher: ContinuationMatcher | None = None,
        usage_sink: UsageSink | None = None,
    ) -> None:
        self.meta = meta
        self.config = config or RelayConfig()
        self.matcher = matcher
        self.usage_sink = usage_sink
        self.reporter = StreamReporter(meta, sink, self.sdk_mode, self.config.reporter)
        self.finish_reason: str | None = None
        self.outcome: str | None = None
        self.frames_seen = 0
        self._error: LLMProviderError | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key, e.g. ``"openai"``."""

    @abstractmethod
    def handle_event(self, event_type: str, payload: dict) -> None:
        """Translate one decoded frame into reporter calls."""

    # -- hooks -------------------------------------------------------------

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {self.auth_header: self.auth_scheme + api_key}

    def create_framer(self) -> SseFramer | LineFramer:
        return LineFramer() if self.framing == "lines" else SseFramer()

    def decode_frame(self, frame: Frame) -> dict | None:
        """Parse a frame's JSON body.  Malformed frames are logged and skipped."""
        data = frame.data.strip()
        if not data or data == "[DONE]":
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("[%s] Skipping malformed frame: %.200s", self.meta.display_name, data)
            return None
        if not isinstance(payload, dict):
            logger.debug("[%s] Skipping non-object frame", self.meta.display_name)
            return None
        return payload

    def finish(self) -> None:
        """Terminal flush after a clean end of stream."""
        self.reporter.flush_all(self.finish_reason)

    def save_continuation(self) -> None:
        """Record the finished response in the continuation cache, if any."""
        if self.matcher is None or not self.reporter.response_id:
            return
        self.matcher.save_message(self.reporter.response_id, self.reporter.transcript())

    def fail(self, message: str, error_code: str | None = None) -> None:
        """Capture a vendor-reported mid-stream error; the stream stops after this frame."""
        if self._error is None:
            self._error = LLMProviderError(message, provider=self.meta.provider, error_code=error_code)
            logger.error("[%s] Vendor reported error: %s", self.meta.display_name, message)

    @property
    def error(self) -> LLMProviderError | None:
        return self._error

    # -- shared stream loop ------------------------------------------------

    def _dispatch(self, frame: Frame) -> None:
        self.frames_seen += 1
        try:
            payload = self.decode_frame(frame)
            if payload is None:
                return
            self.handle_event(frame.event, payload)
        except (LLMProviderError, StreamCancelled):
            raise
        except Exception:
            logger.exception("[%s] Failed to handle %s frame", self.meta.display_name, frame.event or "data")

    def _flush_quietly(self) -> None:
        try:
            self.reporter.flush_all(self.finish_reason)
        except Exception:
            logger.exception("[%s] Flush failed", self.meta.display_name)

    def _settle(self, status: str) -> None:
        self.outcome = status
        notify_actual(self.usage_sink, self.meta.request_id, self.reporter.usage, status)

    async def handle_stream(
        self,
        stream: AsyncIterable[bytes],
        cancel_token: CancelToken | None = None,
    ) -> bool:
        """Consume *stream* to completion.  Returns whether content was produced.

        Raises:
            StreamCancelled: the token fired; buffered content was flushed.
            LLMProviderError: transport failure or vendor-reported error.
        """
        framer = self.create_framer()
        name = self.meta.display_name
        chunks = iter_until_cancelled(stream, cancel_token)
        try:
            try:
                async for chunk in chunks:
                    for frame in framer.feed(chunk):
                        self._dispatch(frame)
                        if self._error is not None:
                            break
                    if self._error is not None:
                        break
            finally:
                await chunks.aclose()
            if self._error is None:
                for frame in framer.close():
                    self._dispatch(frame)
        except (StreamCancelled, asyncio.CancelledError):
            logger.info("[%s] Request cancelled", name)
            self._flush_quietly()
            self._settle("cancelled")
            raise
        except LLMProviderError:
            self._flush_quietly()
            self._settle("failed")
            raise

        if self._error is not None:
            self._flush_quietly()
            self._settle("failed")
            raise self._error

        try:
            self.finish()
        except Exception:
            logger.exception("[%s] Final flush failed", name)
        try:
            self.save_continuation()
        except Exception:
            logger.exception("[%s] Could not save continuation summary", name)
        self._settle("completed")
        logger.debug(
            "[%s] Stream complete: %d frames, has_content=%s",
            name, self.frames_seen, self.reporter.has_content,
        )
        return self.reporter.has_content
