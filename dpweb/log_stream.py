"""
Consumer for the backend's live log stream.

Lines are kept in a ring buffer for display and each accepted line also
raises a pop-up notification. While paused, incoming lines are dropped.
"""

from collections import deque
from enum import Enum
from typing import AsyncIterator, Deque, List, Optional, Tuple

from dpweb.backend import BackendError
from dpweb.events import EventBroker, EventType
from dpweb.notifications import Notification, NotificationQueue


class StreamState(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class LogStreamConsumer:
    """Renders an unbounded event feed into a bounded line buffer."""

    def __init__(
        self,
        notifications: NotificationQueue,
        broker: Optional[EventBroker] = None,
        max_lines: int = 1000,
    ):
        self.notifications = notifications
        self.broker = broker
        self.max_lines = max_lines
        self.state = StreamState.ACTIVE
        self.connected = False
        self.last_error: Optional[str] = None
        self._lines: Deque[str] = deque(maxlen=max_lines)

    @property
    def paused(self) -> bool:
        return self.state == StreamState.PAUSED

    @property
    def label(self) -> str:
        return "Resume" if self.paused else "Pause"

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    @property
    def text(self) -> str:
        return "".join(line + "\n" for line in self._lines)

    def pause(self) -> StreamState:
        self.state = StreamState.PAUSED
        return self.state

    def resume(self) -> StreamState:
        self.state = StreamState.ACTIVE
        return self.state

    def toggle(self) -> StreamState:
        return self.resume() if self.paused else self.pause()

    def clear(self) -> None:
        self._lines.clear()

    def accept(self, line: str) -> Optional[Notification]:
        """Buffer one log line and queue its notification unless paused."""
        if self.paused or not line:
            return None
        self._lines.append(line)
        return self.notifications.push(line)

    def record_error(self, message: str) -> None:
        self.last_error = message
        self._lines.append(f"[stream error] {message}")

    async def handle(self, event: str, data: str) -> bool:
        if event == "error":
            self.record_error(data)
            if self.broker:
                await self.broker.emit(EventType.ERROR, "log_stream_error", {"message": data})
            return False

        entry = self.accept(data)
        if entry is None:
            return False

        if self.broker:
            await self.broker.emit(EventType.LOG, "log_line", {"line": data}, echo=False)
        await self.notifications.announce(entry)
        return True

    async def run(self, stream: AsyncIterator[Tuple[str, str]]) -> None:
        """
        Consume the stream until it ends or fails.

        A failed stream is recorded but not reopened.
        """
        self.connected = True
        try:
            async for event, data in stream:
                await self.handle(event, data)
        except BackendError as e:
            self.record_error(e.message)
            print(f"Log stream closed: {e.message}", flush=True)
            if self.broker:
                await self.broker.emit(
                    EventType.ERROR, "log_stream_closed", {"message": e.message}
                )
        finally:
            self.connected = False

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "label": self.label,
            "connected": self.connected,
            "last_error": self.last_error,
            "lines": self.lines,
        }
