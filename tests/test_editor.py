import asyncio
import json

from dpweb.editor import RuleEditor
from dpweb.events import EventBroker, EventType
from dpweb.notifications import NotificationLevel, NotificationQueue


def test_load_populates_both_tables(backend, client, notifications):
    editor = RuleEditor(client, notifications)
    assert asyncio.run(editor.load()) is True

    assert editor.paths.export() == ["/etc/passwd", "/root"]
    assert editor.commands.export() == ["rm -rf / > echo blocked", "shutdown >"]
    assert editor.paths.draft is not None
    assert editor.commands.draft is not None
    assert editor.load_error is None


def test_load_failure_leaves_tables_empty_but_editable(backend, client, notifications):
    backend.fail("GET", "/api/config")
    editor = RuleEditor(client, notifications)

    assert asyncio.run(editor.load()) is False

    assert editor.load_error == "Failed to fetch configuration"
    assert editor.paths.export() == []
    assert len(editor.paths) == 1
    assert editor.paths.draft is not None
    assert [n.text for n in notifications.active()] == ["Error loading configuration"]


def test_save_exports_and_reloads(backend, client, notifications):
    editor = RuleEditor(client, notifications)

    async def scenario():
        await editor.load()
        draft = editor.paths.draft
        editor.paths.edit(draft, path="/home")
        editor.paths.confirm(draft)
        editor.commands.remove(editor.commands.rows[1])
        return await editor.save()

    assert asyncio.run(scenario()) is True

    payload = json.loads(backend.sent("POST", "/api/config")[0].content)
    assert payload == {
        "protected_paths": ["/etc/passwd", "/root", "/home"],
        "command_rules": ["rm -rf / > echo blocked"],
    }
    # reloaded from the backend after the save
    assert len(backend.sent("GET", "/api/config")) == 2
    assert editor.paths.export() == ["/etc/passwd", "/root", "/home"]
    assert "Rules saved" in [n.text for n in notifications.active()]


def test_save_failure_keeps_rows_and_reports_backend_error(backend, client, notifications):
    editor = RuleEditor(client, notifications)
    asyncio.run(editor.load())

    draft = editor.paths.draft
    editor.paths.edit(draft, path="/srv")
    editor.paths.confirm(draft)
    before = [(row.key, row.state, row.path, row.ordinal) for row in editor.paths.rows]

    backend.fail("POST", "/api/config", status=500, body={"error": "disk full"})
    assert asyncio.run(editor.save()) is False

    after = [(row.key, row.state, row.path, row.ordinal) for row in editor.paths.rows]
    assert after == before
    assert editor.save_error == "disk full"
    errors = [n for n in notifications.active() if n.level == NotificationLevel.ERROR]
    assert errors[-1].text == "disk full"
    assert len(backend.sent("GET", "/api/config")) == 1


class GatedClient:
    """Answers get_config with queued configs, each waiting on its own gate."""

    def __init__(self):
        self.pending = []

    async def get_config(self):
        gate, config = self.pending.pop(0)
        await gate.wait()
        return config


def test_superseded_load_response_is_discarded(notifications):
    client = GatedClient()
    editor = RuleEditor(client, notifications)

    async def scenario():
        slow_gate, fast_gate = asyncio.Event(), asyncio.Event()
        client.pending = [
            (slow_gate, {"protected_paths": ["/old"], "command_rules": []}),
            (fast_gate, {"protected_paths": ["/new"], "command_rules": []}),
        ]
        slow = asyncio.ensure_future(editor.load())
        await asyncio.sleep(0)
        fast = asyncio.ensure_future(editor.load())
        await asyncio.sleep(0)

        fast_gate.set()
        fast_result = await fast
        slow_gate.set()
        return await slow, fast_result

    slow_result, fast_result = asyncio.run(scenario())
    assert (slow_result, fast_result) == (False, True)
    assert editor.paths.export() == ["/new"]


def test_rules_events_are_published(backend, client, notifications, capsys):
    broker = EventBroker()
    editor = RuleEditor(client, notifications, broker)

    asyncio.run(editor.load())

    history = asyncio.run(broker.get_history())
    assert history[-1].step == "rules_loaded"
    assert history[-1].details["paths"]["kind"] == "path"
    assert '"step": "rules_loaded"' in capsys.readouterr().out


def test_load_failure_notification_reaches_browsers(backend, client, clock):
    broker = EventBroker()
    notifications = NotificationQueue(clock=clock, broker=broker)
    editor = RuleEditor(client, notifications, broker)
    backend.fail("GET", "/api/config")

    asyncio.run(editor.load())

    history = asyncio.run(broker.get_history())
    toasts = [e.details for e in history if e.type == EventType.NOTIFICATION]
    assert toasts[0]["text"] == "Error loading configuration"
    assert toasts[0]["level"] == "error"
    assert history[-1].step == "rules_load_failed"
