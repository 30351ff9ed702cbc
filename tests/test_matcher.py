"""Tests for llm_relay.core.matcher: continuation cache lookup."""

from __future__ import annotations

import threading

import pytest

from conftest import assistant, user
from llm_relay.core.matcher import ContinuationMatcher, lines_match
from llm_relay.types import (
    ChatMessage,
    MatcherConfig,
    ResponseSummary,
    TextPart,
    ThinkingPart,
    ToolCallPart,
)

SUNNY = "assistant:text:It is sunny and 21 degrees in Paris today."


@pytest.fixture
def matcher(clock) -> ContinuationMatcher:
    return ContinuationMatcher(clock=clock)


def summary(*lines: str) -> ResponseSummary:
    return ResponseSummary(tuple(lines))


class TestLinesMatch:
    def test_exact_tool_call(self):
        line = "assistant:tool_call:call_1:search"
        assert lines_match(line, line)

    def test_tool_call_ids_must_match(self):
        assert not lines_match(
            "assistant:tool_call:call_X:search",
            "assistant:tool_call:call_Y:search",
        )

    def test_role_mismatch(self):
        assert not lines_match("user:text:hello", "assistant:text:hello")

    def test_kind_mismatch(self):
        assert not lines_match("assistant:thinking:hello", "assistant:text:hello")

    def test_fuzzy_text(self):
        assert lines_match(
            "assistant:text:The deadline is January 30th at 5pm.",
            "assistant:text:The deadline is January 30th at 5 pm.",
        )

    def test_dissimilar_text(self):
        assert not lines_match("assistant:text:yes", "assistant:text:no thanks")

    def test_unknown_kind(self):
        assert not lines_match("assistant:image:x", "assistant:image:x")

    def test_malformed(self):
        assert not lines_match("garbage", "garbage")


class TestFindContinuation:
    def test_match_truncation_point(self, matcher, tool_history):
        matcher.save("resp_1", summary(SUNNY), prompt_cache_key="pck-1")
        match = matcher.find_continuation(tool_history)
        assert match.resume_id == "resp_1"
        assert match.truncate_after_index == 3
        assert match.prompt_cache_key == "pck-1"

    def test_fuzzy_match_on_edited_text(self, matcher, tool_history):
        matcher.save("resp_1", summary("assistant:text:It is sunny and 21 degrees in Paris today!"))
        assert matcher.find_continuation(tool_history).resume_id == "resp_1"

    def test_tool_call_id_mismatch(self, matcher):
        history = [
            user("go"),
            assistant(ToolCallPart("call_Y", "search", {})),
        ]
        matcher.save("resp_1", summary("assistant:tool_call:call_X:search"))
        assert matcher.find_continuation(history) is None

    def test_tool_call_exact(self, matcher, tool_history):
        matcher.save("resp_1", summary("assistant:tool_call:call_1:get_weather"))
        match = matcher.find_continuation(tool_history)
        assert match.truncate_after_index == 1

    def test_newest_entry_wins(self, matcher, tool_history):
        matcher.save("resp_old", summary(SUNNY))
        matcher.save("resp_new", summary(SUNNY))
        assert matcher.find_continuation(tool_history).resume_id == "resp_new"

    def test_expired_after_ttl(self, matcher, clock, tool_history):
        matcher.save("resp_1", summary(SUNNY))
        clock.advance(61 * 60)
        assert matcher.find_continuation(tool_history) is None
        assert "resp_1" not in matcher

    def test_hit_refreshes_timestamp(self, matcher, clock, tool_history):
        matcher.save("resp_1", summary(SUNNY))
        clock.advance(50 * 60)
        assert matcher.find_continuation(tool_history) is not None
        clock.advance(50 * 60)
        assert matcher.find_continuation(tool_history) is not None

    def test_window_limits_scan(self, clock):
        history = [
            user("q0"),
            assistant(TextPart("The answer involves photosynthesis in chloroplasts.")),
            user("q1"),
            assistant(TextPart("Bananas")),
            user("q2"),
            assistant(TextPart("42")),
            user("q3"),
            assistant(TextPart("ok")),
        ]
        cached = summary("assistant:text:The answer involves photosynthesis in chloroplasts.")

        narrow = ContinuationMatcher(MatcherConfig(assistant_window=3), clock=clock)
        narrow.save("resp_1", cached)
        assert narrow.find_continuation(history) is None

        wide = ContinuationMatcher(MatcherConfig(assistant_window=4), clock=clock)
        wide.save("resp_1", cached)
        assert wide.find_continuation(history).truncate_after_index == 1

    def test_user_messages_not_compared(self, matcher):
        history = [ChatMessage(role="user", content=[TextPart("hello there")])]
        matcher.save("resp_1", summary("user:text:hello there"))
        assert matcher.find_continuation(history) is None

    def test_empty_cache(self, matcher, tool_history):
        assert matcher.find_continuation(tool_history) is None

    def test_blank_summary_never_matches(self, matcher, tool_history):
        matcher.save("resp_1", ResponseSummary.from_text("\n  \n"))
        assert matcher.find_continuation(tool_history) is None


class TestSave:
    def test_missing_response_id_ignored(self, matcher):
        matcher.save("", summary(SUNNY))
        assert len(matcher) == 0

    def test_cleanup_expires_on_save(self, matcher, clock):
        matcher.save("resp_1", summary(SUNNY))
        clock.advance(3601)
        matcher.save("resp_2", summary(SUNNY))
        assert "resp_1" not in matcher
        assert "resp_2" in matcher

    def test_capacity_evicts_oldest(self, clock):
        matcher = ContinuationMatcher(MatcherConfig(max_entries=2), clock=clock)
        for i in range(3):
            matcher.save(f"resp_{i}", summary(SUNNY))
        assert len(matcher) == 2
        assert "resp_0" not in matcher

    def test_save_message_keeps_last_items(self, matcher):
        message = assistant(
            ThinkingPart("a"),
            TextPart("b"),
            ToolCallPart("c1", "t1"),
            ToolCallPart("c2", "t2"),
        )
        matcher.save_message("resp_1", message)
        history = [user("x"), assistant(ThinkingPart("a"))]
        # thinking line was the oldest of four and got dropped
        assert matcher.find_continuation(history) is None
        history = [user("x"), assistant(ToolCallPart("c2", "t2"))]
        assert matcher.find_continuation(history).resume_id == "resp_1"

    def test_save_response(self, matcher):
        output = [{"type": "message", "content": [{"type": "output_text", "text": "Done."}]}]
        matcher.save_response("resp_1", output, prompt_cache_key="pck")
        match = matcher.find_continuation([user("x"), assistant(TextPart("Done."))])
        assert match.prompt_cache_key == "pck"

    def test_clear(self, matcher):
        matcher.save("resp_1", summary(SUNNY))
        matcher.clear()
        assert len(matcher) == 0

    def test_concurrent_saves(self, clock):
        matcher = ContinuationMatcher(MatcherConfig(max_entries=50), clock=clock)

        def worker(n: int) -> None:
            for i in range(40):
                matcher.save(f"resp_{n}_{i}", summary(SUNNY))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(matcher) == 50
