"""
Short-lived pop-up notifications shown to the operator.
"""

import time
from collections import deque
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from dpweb.events import EventBroker, EventType


NOTIFICATION_LIFETIME_SECONDS = 5.0


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Notification:
    text: str
    level: NotificationLevel
    created_at: float
    expires_at: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        return data


class NotificationQueue:
    """
    Independent toast entries with a fixed lifetime.

    Duplicate texts are never merged. The queue is bounded; when full the
    oldest entry is dropped to make room. With a broker attached, `post`
    also relays each entry to the browsers as a `notification` event.
    """

    def __init__(
        self,
        lifetime: float = NOTIFICATION_LIFETIME_SECONDS,
        max_entries: int = 50,
        clock: Callable[[], float] = time.time,
        broker: Optional[EventBroker] = None,
    ):
        self.broker = broker
        self.lifetime = lifetime
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Deque[Notification] = deque(maxlen=max_entries)

    def push(self, text: str, level: NotificationLevel = NotificationLevel.INFO) -> Notification:
        now = self._clock()
        entry = Notification(
            text=text,
            level=level,
            created_at=now,
            expires_at=now + self.lifetime,
        )
        self._entries.append(entry)
        return entry

    async def announce(self, entry: Notification) -> None:
        if self.broker:
            await self.broker.emit(
                EventType.NOTIFICATION,
                "notification",
                entry.to_dict(),
                echo=entry.level != NotificationLevel.INFO,
            )

    async def post(self, text: str, level: NotificationLevel = NotificationLevel.INFO) -> Notification:
        entry = self.push(text, level)
        await self.announce(entry)
        return entry

    async def success(self, text: str) -> Notification:
        return await self.post(text, NotificationLevel.SUCCESS)

    async def error(self, text: str) -> Notification:
        return await self.post(text, NotificationLevel.ERROR)

    def expire(self, now: Optional[float] = None) -> int:
        """Drop entries past their lifetime. Returns how many were dropped."""
        now = self._clock() if now is None else now
        before = len(self._entries)
        self._entries = deque(
            (e for e in self._entries if e.expires_at > now),
            maxlen=self.max_entries,
        )
        return before - len(self._entries)

    def active(self) -> List[Notification]:
        self.expire()
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
