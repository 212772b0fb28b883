"""Simple in-memory broker for plan progress and regeneration events."""

from __future__ import annotations

import json
import queue
from typing import Dict, Iterable


class PlanEventBroker:
    def __init__(self, max_queue: int = 256) -> None:
        self.listeners: set[queue.Queue] = set()
        self.max_queue = max_queue

    def publish(self, payload: Dict) -> None:
        message = json.dumps(payload, default=str)
        for listener in list(self.listeners):
            try:
                listener.put_nowait(message)
            except queue.Full:
                continue

    def subscribe(self) -> queue.Queue:
        q: queue.Queue[str] = queue.Queue(maxsize=self.max_queue)
        self.listeners.add(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        self.listeners.discard(q)

    def listen(self) -> Iterable[str]:
        q = self.subscribe()
        try:
            while True:
                data = q.get()
                yield data
        finally:
            self.unsubscribe(q)


plan_event_broker = PlanEventBroker()


def publish_week_status(user_id: int, week_number: int, status: str, error: str | None = None) -> None:
    plan_event_broker.publish(
        {
            "type": "week_status",
            "payload": {
                "user_id": user_id,
                "week_number": week_number,
                "status": status,
                "error": error,
            },
        }
    )


def notify_plan_regenerated(user_id: int, plan_id: int, total_weeks: int, failed_weeks: int) -> None:
    """Fired once when every week of a regenerated plan has reached a terminal state."""

    plan_event_broker.publish(
        {
            "type": "plan_regenerated",
            "payload": {
                "user_id": user_id,
                "plan_id": plan_id,
                "total_weeks": total_weeks,
                "failed_weeks": failed_weeks,
            },
        }
    )
