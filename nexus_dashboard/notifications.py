"""Short-lived status messages with automatic expiry."""

from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from datetime import datetime, timezone

import logfire

from .models import Level, Notification


class NotificationQueue:
    """Ordered, capped queue whose entries remove themselves after ``ttl`` seconds.

    Expiry timers live on the running event loop, so ``push`` must be called
    from inside it.
    """

    def __init__(self, ttl: float = 5.0, max_size: int = 5):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.max_size = max_size
        self._entries: OrderedDict[str, tuple[Notification, asyncio.TimerHandle]] = OrderedDict()

    @property
    def items(self) -> tuple[Notification, ...]:
        return tuple(note for note, _ in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._entries

    def push(self, text: str, level: Level = "info") -> str:
        """Append a notification and return its id, evicting the oldest when full."""
        loop = asyncio.get_running_loop()
        note = Notification(
            id=uuid.uuid4().hex,
            text=text,
            created_at=datetime.now(timezone.utc),
            ttl=self.ttl,
            level=level,
        )

        while len(self._entries) >= self.max_size:
            _, (evicted, handle) = self._entries.popitem(last=False)
            handle.cancel()
            logfire.debug("Evicted notification {id}", id=evicted.id)

        handle = loop.call_later(self.ttl, self.dismiss, note.id)
        self._entries[note.id] = (note, handle)
        return note.id

    def dismiss(self, notification_id: str) -> bool:
        """Remove a notification; unknown or already removed ids are a no-op."""
        entry = self._entries.pop(notification_id, None)
        if entry is None:
            return False
        _, handle = entry
        handle.cancel()
        return True

    def close(self) -> None:
        for _, handle in self._entries.values():
            handle.cancel()
        self._entries.clear()
