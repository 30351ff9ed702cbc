"""ContinuationMatcher: fuzzy lookup of previously completed responses.

After a response completes its summary is saved under the upstream
response id.  Before the next request the conversation tail is compared
against cached summaries to decide whether the vendor can continue from a
cached response, and how much history can be dropped from the request.

Thread-safe: every cache access holds ``_lock``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence

from ..types import (
    CacheEntry,
    ChatMessage,
    ContinuationMatch,
    MatcherConfig,
    ResponseSummary,
)
from .similarity import is_similar
from .summary import parse_line, summarize_message, summarize_response_output

logger = logging.getLogger(__name__)

_EXACT_KINDS = frozenset({"tool_call", "tool_result"})
_FUZZY_KINDS = frozenset({"text", "thinking"})


def lines_match(line_a: str, line_b: str, threshold: float = 90.0) -> bool:
    """Compare two summary lines.

    Role and kind must agree.  Tool lines need exact equality; text and
    thinking lines use Levenshtein similarity above *threshold*.
    """
    a = parse_line(line_a)
    b = parse_line(line_b)
    if a is None or b is None:
        return False
    if a.role != b.role or a.kind != b.kind:
        return False
    if a.kind in _EXACT_KINDS:
        return line_a == line_b
    if a.kind in _FUZZY_KINDS:
        return is_similar(a.payload, b.payload, threshold)
    return False


class ContinuationMatcher:
    """Bounded, TTL-evicting cache of response summaries."""

    def __init__(
        self,
        config: MatcherConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or MatcherConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, response_id: str) -> bool:
        with self._lock:
            return response_id in self._entries

    # -- save --------------------------------------------------------------

    def save(
        self,
        response_id: str,
        summary: ResponseSummary,
        prompt_cache_key: str | None = None,
    ) -> None:
        """Store a summary for *response_id*, then evict expired and excess entries."""
        if not response_id:
            logger.warning("Continuation cache: missing response id, not saving")
            return
        with self._lock:
            self._entries[response_id] = CacheEntry(
                response_id=response_id,
                summary=summary,
                timestamp=self._clock(),
                prompt_cache_key=prompt_cache_key,
            )
            self._entries.move_to_end(response_id)
            self._cleanup()
        logger.debug(
            "Continuation cache: saved %s (prompt_cache_key=%s, %d lines)",
            response_id, prompt_cache_key, len(summary.lines),
        )

    def save_response(
        self,
        response_id: str,
        output: Sequence[dict],
        prompt_cache_key: str | None = None,
    ) -> None:
        """Save from a Responses-API ``output`` array."""
        summary = summarize_response_output(
            output, self.config.response_items, self.config.summary_text_limit,
        )
        self.save(response_id, summary, prompt_cache_key)

    def save_message(
        self,
        response_id: str,
        message: ChatMessage,
        prompt_cache_key: str | None = None,
    ) -> None:
        """Save from a reporter transcript, keeping its last few items."""
        summary = summarize_message(message, self.config.summary_text_limit)
        items = self.config.response_items
        self.save(response_id, ResponseSummary(summary.lines[-items:] if items > 0 else ()), prompt_cache_key)

    def _cleanup(self) -> None:
        now = self._clock()
        ttl = self.config.ttl_seconds
        for key in [k for k, e in self._entries.items() if now - e.timestamp > ttl]:
            del self._entries[key]
            logger.debug("Continuation cache: expired %s", key)
        while len(self._entries) > self.config.max_entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Continuation cache: evicted %s", key)

    # -- lookup ------------------------------------------------------------

    def find_continuation(self, history: Sequence[ChatMessage]) -> ContinuationMatch | None:
        """Return the newest cached response matching the conversation tail.

        Scans cached entries newest first.  For each, walks the last
        ``assistant_window`` assistant messages from the end; the first one
        sharing at least one matching line is the truncation point.
        """
        now = self._clock()
        window = self.config.assistant_window
        threshold = self.config.similarity_threshold
        summaries: dict[int, tuple[str, ...]] = {}

        with self._lock:
            for key in list(reversed(self._entries)):
                entry = self._entries[key]
                if now - entry.timestamp > self.config.ttl_seconds:
                    del self._entries[key]
                    logger.debug("Continuation cache: expired %s", key)
                    continue
                cached_lines = [line for line in entry.summary.lines if line.strip()]
                if not cached_lines:
                    continue

                seen = 0
                for i in range(len(history) - 1, -1, -1):
                    message = history[i]
                    if message.role != "assistant":
                        continue
                    seen += 1
                    if seen > window:
                        break
                    if i not in summaries:
                        summaries[i] = summarize_message(
                            message, self.config.summary_text_limit,
                        ).lines
                    current_lines = [line for line in summaries[i] if line.strip()]
                    if any(
                        lines_match(current, cached, threshold)
                        for current in current_lines
                        for cached in cached_lines
                    ):
                        entry.timestamp = now
                        self._entries.move_to_end(key)
                        logger.debug(
                            "Continuation cache: hit %s at message %d (assistant #%d from end)",
                            entry.response_id, i, seen,
                        )
                        return ContinuationMatch(
                            resume_id=entry.response_id,
                            truncate_after_index=i,
                            prompt_cache_key=entry.prompt_cache_key,
                        )

        logger.debug("Continuation cache: no match")
        return None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
