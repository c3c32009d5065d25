import asyncio

from dpweb.backend import BackendError
from dpweb.events import EventBroker, EventType
from dpweb.log_stream import LogStreamConsumer, StreamState
from dpweb.notifications import NotificationQueue


async def feed(events):
    for event in events:
        yield event


async def broken_feed():
    yield "log", "before failure"
    raise BackendError("Log stream error: connection reset")


def test_active_consumer_buffers_and_notifies(notifications):
    consumer = LogStreamConsumer(notifications)
    asyncio.run(consumer.run(feed([("log", "a"), ("log", "b")])))

    assert consumer.lines == ["a", "b"]
    assert consumer.text == "a\nb\n"
    assert [n.text for n in notifications.active()] == ["a", "b"]


def test_paused_consumer_drops_events_without_backlog(notifications):
    consumer = LogStreamConsumer(notifications)
    consumer.accept("kept")
    consumer.pause()

    asyncio.run(consumer.run(feed([("log", "x"), ("log", "y"), ("log", "z")])))

    assert consumer.lines == ["kept"]
    assert [n.text for n in notifications.active()] == ["kept"]

    consumer.resume()
    assert consumer.lines == ["kept"]
    asyncio.run(consumer.run(feed([("log", "after")])))
    assert consumer.lines == ["kept", "after"]


def test_toggle_switches_state_and_label(notifications):
    consumer = LogStreamConsumer(notifications)
    assert consumer.label == "Pause"
    assert consumer.toggle() == StreamState.PAUSED
    assert consumer.label == "Resume"
    assert consumer.toggle() == StreamState.ACTIVE
    assert consumer.label == "Pause"


def test_clear_keeps_state(notifications):
    consumer = LogStreamConsumer(notifications)
    consumer.accept("a")
    consumer.pause()
    consumer.clear()
    assert consumer.lines == []
    assert consumer.paused


def test_buffer_is_bounded(notifications):
    consumer = LogStreamConsumer(notifications, max_lines=3)
    for i in range(10):
        consumer.accept(f"line {i}")
    assert consumer.lines == ["line 7", "line 8", "line 9"]


def test_empty_payloads_are_ignored(notifications):
    consumer = LogStreamConsumer(notifications)
    assert consumer.accept("") is None
    assert consumer.lines == []
    assert len(notifications) == 0


def test_error_event_is_recorded_on_buffer(notifications):
    consumer = LogStreamConsumer(notifications)
    asyncio.run(consumer.run(feed([("error", "Error opening log file")])))
    assert consumer.lines == ["[stream error] Error opening log file"]
    assert consumer.last_error == "Error opening log file"


def test_transport_failure_is_recorded_and_not_retried(notifications, capsys):
    consumer = LogStreamConsumer(notifications)
    asyncio.run(consumer.run(broken_feed()))

    assert consumer.lines == [
        "before failure",
        "[stream error] Log stream error: connection reset",
    ]
    assert consumer.connected is False
    assert "Log stream closed" in capsys.readouterr().out


def test_accepted_lines_are_broadcast_without_stdout_echo(notifications, capsys):
    broker = EventBroker()
    consumer = LogStreamConsumer(notifications, broker)

    async def scenario():
        events = broker.subscribe()
        receiver = asyncio.ensure_future(events.__anext__())
        await asyncio.sleep(0)
        await consumer.handle("log", "blocked rm -rf /")
        event = await receiver
        await events.aclose()
        return event

    event = asyncio.run(scenario())
    assert event.type == EventType.LOG
    assert event.details == {"line": "blocked rm -rf /"}
    assert capsys.readouterr().out == ""


def test_consumes_backend_sse_stream(client, notifications):
    consumer = LogStreamConsumer(notifications)
    asyncio.run(consumer.run(client.stream_logs()))
    assert consumer.lines == ["first line", "second line"]


def test_line_notification_reaches_subscribers_with_level(clock):
    broker = EventBroker()
    notifications = NotificationQueue(clock=clock, broker=broker)
    consumer = LogStreamConsumer(notifications, broker)

    async def scenario():
        events = broker.subscribe()
        first = asyncio.ensure_future(events.__anext__())
        await asyncio.sleep(0)
        await consumer.handle("log", "blocked shutdown")
        received = [await first, await events.__anext__()]
        await events.aclose()
        return received

    log_event, toast = asyncio.run(scenario())
    assert log_event.type == EventType.LOG
    assert toast.type == EventType.NOTIFICATION
    assert toast.details["text"] == "blocked shutdown"
    assert toast.details["level"] == "info"
