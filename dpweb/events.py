"""
Dashboard event fan-out.

Every browser tab holds one SSE subscription to the broker. Events published
with echo=True are also kept in a bounded history and written to stdout as
one JSON line each, which is the dashboard's log.
"""

import asyncio
import json
from collections import deque
from datetime import datetime, timezone
from typing import AsyncGenerator, Deque, Dict, Any, List
from dataclasses import dataclass, field, asdict
from enum import Enum


class EventType(str, Enum):
    STEP = "step"
    LOG = "log"
    NOTIFICATION = "notification"
    STATUS = "status"
    STATS = "stats"
    RULES = "rules"
    STATE_CHANGE = "state_change"
    ERROR = "error"


@dataclass
class Event:
    ts: str
    type: EventType
    step: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class EventBroker:
    """Broadcasts dashboard events to the connected browser tabs."""

    def __init__(self, max_history: int = 100, queue_size: int = 100):
        self._subscribers: List[asyncio.Queue] = []
        self._history: Deque[Event] = deque(maxlen=max_history)
        self._queue_size = queue_size
        self._lock = asyncio.Lock()

    async def publish(self, event: Event, echo: bool = True) -> None:
        """
        Hand an event to every subscriber.

        Relayed backend log lines and log toasts use echo=False; they stay
        out of stdout and the history.
        """
        if echo:
            print(event.to_json(), flush=True)

        async with self._lock:
            if echo:
                self._history.append(event)

            # A tab whose queue is full has stopped reading
            stalled = []
            for queue in self._subscribers:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    stalled.append(queue)
            for queue in stalled:
                self._subscribers.remove(queue)

    async def emit(
        self,
        event_type: EventType,
        step: str,
        details: Dict[str, Any] = None,
        echo: bool = True
    ) -> Event:
        event = Event(
            ts=datetime.now(timezone.utc).isoformat(),
            type=event_type,
            step=step,
            details=details or {}
        )
        await self.publish(event, echo=echo)
        return event

    async def subscribe(self) -> AsyncGenerator[Event, None]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers.append(queue)

        try:
            while True:
                yield await queue.get()
        finally:
            async with self._lock:
                if queue in self._subscribers:
                    self._subscribers.remove(queue)

    async def get_history(self, limit: int = 50) -> List[Event]:
        """Most recent echoed events, oldest first."""
        async with self._lock:
            return list(self._history)[-limit:] if limit > 0 else []
