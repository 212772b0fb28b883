"""In-memory log buffer for generative-service interactions."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List

from .plan_events import plan_event_broker

LOG_MAX_ENTRIES = 500
_buffer: deque[Dict[str, Any]] = deque(maxlen=LOG_MAX_ENTRIES)


def log_event(kind: str, payload: Dict[str, Any]) -> None:
    """Store a log entry in memory and broadcast it to plan event listeners."""
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "kind": kind,
        **payload,
    }
    _buffer.appendleft(entry)
    plan_event_broker.publish({"type": "ai_log", "payload": entry})


def get_logs(limit: int = 100) -> List[Dict[str, Any]]:
    """Return a copy of the most recent log entries."""
    limit = max(1, min(limit, LOG_MAX_ENTRIES))
    return list(_buffer)[:limit]


def clear_logs() -> None:
    _buffer.clear()
