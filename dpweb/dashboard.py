"""
Dashboard shell: cached backend config, status view, stats and actions.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from dpweb.backend import BackendClient, BackendError
from dpweb.events import EventBroker, EventType
from dpweb.notifications import NotificationQueue


BASIC_DEFAULTS: Dict[str, str] = {
    "language": "",
    "disable": "false",
    "expire_hours": "24",
    "update": "enable",
    "mode": "Permissive",
    "web_ip": "127.0.0.1",
    "web_port": "8080",
}


@dataclass
class StatusView:
    indicator: str = ""
    text: str = "Error loading status"
    protection: str = ""
    last_updated: str = ""
    update_mode: str = ""
    protection_mode: str = ""
    protection_count: Optional[int] = None
    expiration: str = ""
    # "disabled" while a temporary disable window is running
    expiration_level: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def format_timestamp(value: Any) -> str:
    try:
        return datetime.fromtimestamp(int(value)).strftime("%Y-%m-%d %H:%M:%S")
    except (TypeError, ValueError, OverflowError, OSError):
        return "Unknown"


def derive_status(config: Optional[Dict[str, Any]], previous: Optional[StatusView] = None) -> StatusView:
    """Build the status panel from the backend's basic settings."""
    view = StatusView()
    if previous is not None:
        view.protection_count = previous.protection_count
        view.expiration = previous.expiration
        view.expiration_level = previous.expiration_level

    if not config or not config.get("basic"):
        return view

    basic = config["basic"]
    if basic.get("disable") == "false":
        view.indicator = "active"
        view.text = "Active"
        view.protection = "Enabled"
    else:
        view.text = "Disabled"
        view.protection = "Disabled"

    view.last_updated = format_timestamp(basic.get("timestamp"))
    view.update_mode = "Enabled" if basic.get("update") == "enable" else "Disabled"
    view.protection_mode = basic.get("mode") or "Permissive"
    return view


def apply_stats(view: StatusView, stats: Dict[str, Any], config: Optional[Dict[str, Any]]) -> StatusView:
    view.protection_count = stats.get("protection_count")
    if stats.get("remaining_time"):
        view.expiration = stats["remaining_time"]
        view.expiration_level = "disabled"
    else:
        basic = (config or {}).get("basic") or {}
        expire_hours = basic.get("expire_hours", BASIC_DEFAULTS["expire_hours"])
        view.expiration = f"{expire_hours} hours (default)"
        view.expiration_level = "enabled"
    return view


class DashboardContext:
    """
    Page-level state shared by the status panel, settings form and tools.

    Holds the last config fetched from the backend so stats rendering can
    read the default disable window without refetching.
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
        self.config: Optional[Dict[str, Any]] = None
        self.status = StatusView()
        self.languages: List[Dict[str, str]] = []
        self.command_output: str = ""
        self.last_error: Optional[str] = None
        self._refresh_generation = 0
        self._stats_generation = 0

    async def _fail(self, error: BackendError) -> None:
        self.last_error = error.message
        await self.notifications.error(error.message)

    async def _emit(self, event_type: EventType, step: str, details: Dict[str, Any] = None) -> None:
        if self.broker:
            await self.broker.emit(event_type, step, details)

    async def refresh(self) -> StatusView:
        """Refetch the config and rebuild the status view."""
        self._refresh_generation += 1
        generation = self._refresh_generation

        try:
            config = await self.client.get_config()
        except BackendError as e:
            if generation == self._refresh_generation:
                self.config = None
                self.status = derive_status(None, self.status)
                await self.notifications.error("Error loading configuration")
                await self._emit(EventType.ERROR, "status_refresh_failed", {"message": e.message})
            return self.status

        if generation == self._refresh_generation:
            self.config = config
            self.status = derive_status(config, self.status)
            await self._emit(EventType.STATUS, "status_refreshed", self.status.to_dict())
        return self.status

    async def refresh_stats(self) -> StatusView:
        """Refetch stats. Failures leave the current view as it is."""
        self._stats_generation += 1
        generation = self._stats_generation

        try:
            stats = await self.client.get_stats()
        except BackendError:
            return self.status

        if generation == self._stats_generation:
            apply_stats(self.status, stats, self.config)
            await self._emit(EventType.STATS, "stats_refreshed", self.status.to_dict())
        return self.status

    async def load_languages(self) -> List[Dict[str, str]]:
        try:
            self.languages = await self.client.get_languages()
        except BackendError:
            self.languages = []
            await self.notifications.error("Error loading languages")
        return self.languages

    def settings_form(self) -> Dict[str, str]:
        basic = (self.config or {}).get("basic") or {}
        return {key: basic.get(key) or default for key, default in BASIC_DEFAULTS.items()}

    async def save_settings(self, basic: Dict[str, str]) -> bool:
        try:
            await self.client.update_config({"basic": basic})
        except BackendError as e:
            await self._fail(e)
            return False
        await self.notifications.success("Configuration saved")
        await self.refresh()
        return True

    async def reload(self) -> bool:
        try:
            await self.client.reload()
        except BackendError as e:
            await self._fail(e)
            return False
        await self.notifications.success("Configuration reloaded")
        await self._emit(EventType.STEP, "service_reloaded")
        await self.refresh()
        return True

    async def restart(self) -> bool:
        try:
            await self.client.restart()
        except BackendError as e:
            await self._fail(e)
            return False
        await self.notifications.success("Service restarted")
        await self._emit(EventType.STEP, "service_restarted")
        await self.refresh()
        return True

    async def execute(self, command: str) -> Optional[str]:
        """Run an ad-hoc command on the backend. Blank commands are ignored."""
        if not command.strip():
            return None
        try:
            result = await self.client.execute_command(command)
        except BackendError as e:
            await self._fail(e)
            return None
        self.command_output = result.get("output", "") if isinstance(result, dict) else ""
        await self._emit(EventType.STEP, "command_executed", {"command": command})
        return self.command_output


class StatusPoller:
    """Refreshes dashboard stats on a fixed interval."""

    def __init__(self, context: DashboardContext, interval: float = 5.0):
        self.context = context
        self.interval = interval
        self._stopped = asyncio.Event()

    def stop(self) -> None:
        self._stopped.set()

    async def run(self) -> None:
        while not self._stopped.is_set():
            await self.context.refresh_stats()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
