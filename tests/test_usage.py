"""Tests for llm_relay.usage."""

from __future__ import annotations

import logging
import threading

from conftest import FailingUsageSink, RecordingUsageSink
from llm_relay.types import UsageReport, UsageSink
from llm_relay.usage import UsageLog, notify_actual, notify_estimated


class TestNotify:
    def test_forwarding(self):
        sink = RecordingUsageSink()
        notify_estimated(sink, "r1", "gpt-4o", 120)
        notify_actual(sink, "r1", UsageReport(120, 30), "completed")
        assert sink.estimated == [("r1", "gpt-4o", 120)]
        assert sink.actual == [("r1", UsageReport(120, 30), "completed")]

    def test_none_sink(self):
        notify_estimated(None, "r1", "m", 1)
        notify_actual(None, "r1", None, "failed")

    def test_sink_failure_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            notify_estimated(FailingUsageSink(), "r1", "m", 1)
            notify_actual(FailingUsageSink(), "r1", None, "cancelled")
        assert caplog.text.count("usage store offline") == 2


class TestUsageLog:
    def test_is_usage_sink(self):
        assert isinstance(UsageLog(), UsageSink)

    def test_estimate_then_actual(self):
        log = UsageLog()
        log.record_estimated_tokens("r1", "gpt-4o", 50)
        assert log.pending() == ["r1"]
        log.update_actual_tokens("r1", UsageReport(48, 12, cached_tokens=32), "completed")
        (record,) = log.records()
        assert record["model_id"] == "gpt-4o"
        assert record["input_tokens"] == 48
        assert record["total_tokens"] == 60
        assert record["cached_tokens"] == 32
        assert log.pending() == []

    def test_actual_without_usage(self):
        log = UsageLog()
        log.record_estimated_tokens("r1", "m", 5)
        log.update_actual_tokens("r1", None, "cancelled")
        record = log.records()[0]
        assert record["status"] == "cancelled"
        assert "input_tokens" not in record

    def test_totals(self):
        log = UsageLog()
        log.update_actual_tokens("a", UsageReport(10, 5, cached_tokens=4), "completed")
        log.update_actual_tokens("b", UsageReport(3, 1), "completed")
        log.update_actual_tokens("c", None, "failed")
        assert log.totals() == {
            "requests": 3,
            "completed": 2,
            "input_tokens": 13,
            "output_tokens": 6,
            "cached_tokens": 4,
            "total_tokens": 19,
        }

    def test_bounded(self):
        log = UsageLog(max_records=2)
        for i in range(5):
            log.update_actual_tokens(f"r{i}", None, "completed")
        assert [r["request_id"] for r in log.records()] == ["r3", "r4"]

    def test_concurrent_updates(self):
        log = UsageLog(max_records=1000)

        def worker(n: int) -> None:
            for i in range(50):
                rid = f"{n}-{i}"
                log.record_estimated_tokens(rid, "m", 1)
                log.update_actual_tokens(rid, UsageReport(1, 1), "completed")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert log.totals()["requests"] == 200
        assert log.pending() == []
