"""
Bounded ring buffer of recently relayed MQTT messages.

Debugging aid and polling fallback for clients without a live socket. Only
the newest entries are kept; nothing is persisted.
"""

from collections import deque
from typing import Any

from .envelope import utc_now_z


class MessageBuffer:
    def __init__(self, capacity: int = 100):
        self.capacity = capacity
        self._entries: deque[dict[str, Any]] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, user_id: str, broker_id: str, topic: str, payload: str, qos: int = 0) -> None:
        self._entries.append(
            {
                "userId": user_id,
                "brokerId": broker_id,
                "topic": topic,
                "payload": payload,
                "qos": qos,
                "receivedAt": utc_now_z(),
            }
        )

    def messages_for(
        self, user_id: str, broker_id: str | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """Oldest first; `limit` keeps the newest entries."""
        entries = [
            entry
            for entry in self._entries
            if entry["userId"] == user_id and (broker_id is None or entry["brokerId"] == broker_id)
        ]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def clear(self) -> None:
        self._entries.clear()
