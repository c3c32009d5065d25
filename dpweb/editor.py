"""
Rule editor: the protected-path and command-rule tables plus load/save.
"""

from typing import Any, Dict, Optional

from dpweb.backend import BackendClient, BackendError
from dpweb.events import EventBroker, EventType
from dpweb.notifications import NotificationQueue
from dpweb.rules import RuleKind, RuleTable


class RuleEditor:
    """
    Two independent rule tables kept in sync with the backend config.

    The backend stays the source of truth: every successful save is followed
    by a fresh load. Load and save each carry a generation number so that a
    response overtaken by a newer request of the same kind is ignored.
    """

    def __init__(
        self,
        client: BackendClient,
        notifications: NotificationQueue,
        broker: Optional[EventBroker] = None,
    ):
        self.client = client
        self.notifications = notifications
        self.broker = broker
        self.paths = RuleTable(RuleKind.PATH)
        self.commands = RuleTable(RuleKind.COMMAND)
        self.load_error: Optional[str] = None
        self.save_error: Optional[str] = None
        self._load_generation = 0
        self._save_generation = 0

    def table(self, kind: RuleKind) -> RuleTable:
        return self.paths if kind == RuleKind.PATH else self.commands

    def export(self) -> Dict[str, Any]:
        return {
            "protected_paths": self.paths.export(),
            "command_rules": self.commands.export(),
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            "paths": self.paths.snapshot(),
            "commands": self.commands.snapshot(),
            "load_error": self.load_error,
            "save_error": self.save_error,
        }

    async def _notify_rules_changed(self, step: str) -> None:
        if self.broker:
            await self.broker.emit(EventType.RULES, step, self.snapshot())

    async def load(self) -> bool:
        self._load_generation += 1
        generation = self._load_generation

        try:
            config = await self.client.get_config()
        except BackendError as e:
            if generation != self._load_generation:
                return False
            self.load_error = e.message
            self.paths.populate([])
            self.commands.populate([])
            await self.notifications.error("Error loading configuration")
            await self._notify_rules_changed("rules_load_failed")
            return False

        if generation != self._load_generation:
            return False

        self.load_error = None
        self.paths.populate(config.get("protected_paths") or [])
        self.commands.populate(config.get("command_rules") or [])
        await self._notify_rules_changed("rules_loaded")
        return True

    async def save(self) -> bool:
        self._save_generation += 1
        generation = self._save_generation

        try:
            await self.client.update_config(self.export())
        except BackendError as e:
            if generation != self._save_generation:
                return False
            self.save_error = e.message
            await self.notifications.error(e.message)
            if self.broker:
                await self.broker.emit(EventType.ERROR, "rules_save_failed", {"message": e.message})
            return False

        if generation != self._save_generation:
            return False

        self.save_error = None
        await self.notifications.success("Rules saved")
        await self.load()
        return True
