"""Usage sink helpers and a thread-safe in-memory usage log."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone

from .types import UsageReport, UsageSink

logger = logging.getLogger(__name__)


def notify_estimated(
    sink: UsageSink | None, request_id: str, model_id: str, estimated_input_tokens: int,
) -> None:
    """Forward an estimate to *sink*; failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.record_estimated_tokens(request_id, model_id, estimated_input_tokens)
    except Exception as e:
        logger.warning("Usage sink failed to record estimate for %s: %s", request_id, e)


def notify_actual(
    sink: UsageSink | None, request_id: str, usage: UsageReport | None, status: str,
) -> None:
    """Forward final usage to *sink*; failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.update_actual_tokens(request_id, usage, status)
    except Exception as e:
        logger.warning("Usage sink failed to update %s: %s", request_id, e)


class UsageLog:
    """Collects per-request token usage.

    Thread-safe: requests on different tasks or threads may report
    concurrently.
    """

    def __init__(self, max_records: int = 200) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, dict] = {}
        self._records: deque[dict] = deque(maxlen=max_records)

    def record_estimated_tokens(
        self, request_id: str, model_id: str, estimated_input_tokens: int,
    ) -> None:
        with self._lock:
            self._pending[request_id] = {
                "request_id": request_id,
                "model_id": model_id,
                "estimated_input_tokens": estimated_input_tokens,
                "started": datetime.now(timezone.utc).isoformat(),
            }

    def update_actual_tokens(
        self, request_id: str, usage: UsageReport | None, status: str,
    ) -> None:
        with self._lock:
            record = self._pending.pop(request_id, {"request_id": request_id})
            record["status"] = status
            record["finished"] = datetime.now(timezone.utc).isoformat()
            if usage is not None:
                record["input_tokens"] = usage.input_tokens
                record["output_tokens"] = usage.output_tokens
                record["cached_tokens"] = usage.cached_tokens
                record["total_tokens"] = usage.total_tokens
            self._records.append(record)

    def records(self) -> list[dict]:
        with self._lock:
            return list(self._records)

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def totals(self) -> dict:
        """Aggregate tokens over completed records."""
        with self._lock:
            records = list(self._records)
        return {
            "requests": len(records),
            "completed": sum(1 for r in records if r.get("status") == "completed"),
            "input_tokens": sum(r.get("input_tokens", 0) for r in records),
            "output_tokens": sum(r.get("output_tokens", 0) for r in records),
            "cached_tokens": sum(r.get("cached_tokens") or 0 for r in records),
            "total_tokens": sum(r.get("total_tokens", 0) for r in records),
        }
