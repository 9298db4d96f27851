"""In-process counters exposed on ``/metrics``."""

from __future__ import annotations

import threading
import time
from typing import Any

__all__ = [
    "record_call",
    "record_cursor_retry",
    "record_no_show",
    "record_request",
    "reset",
    "snapshot",
]

_lock = threading.Lock()
_metrics: dict[str, Any] = {}


def reset() -> None:
    with _lock:
        _metrics.clear()
        _metrics.update(
            {
                "requests_total": 0,
                "requests_by_status": {},
                "calls_by_kind": {"normal": 0, "recall": 0, "fallback_recall": 0, "exhausted": 0},
                "no_shows": 0,
                "cursor_retries": 0,
                "start_time": time.time(),
            }
        )


reset()


def record_request(status: int) -> None:
    """Call from middleware to track request counts."""
    key = str(status)
    with _lock:
        _metrics["requests_total"] += 1
        _metrics["requests_by_status"][key] = _metrics["requests_by_status"].get(key, 0) + 1


def record_call(kind: str) -> None:
    """kind: normal | recall | fallback_recall | exhausted."""
    with _lock:
        _metrics["calls_by_kind"][kind] = _metrics["calls_by_kind"].get(kind, 0) + 1


def record_no_show() -> None:
    with _lock:
        _metrics["no_shows"] += 1


def record_cursor_retry() -> None:
    with _lock:
        _metrics["cursor_retries"] += 1


def snapshot() -> dict[str, Any]:
    with _lock:
        return {
            **_metrics,
            "requests_by_status": dict(_metrics["requests_by_status"]),
            "calls_by_kind": dict(_metrics["calls_by_kind"]),
        }
