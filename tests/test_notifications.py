import asyncio

from dpweb.events import EventBroker, EventType
from dpweb.notifications import NotificationLevel, NotificationQueue


def test_entries_expire_after_lifetime(notifications, clock):
    notifications.push("first")
    clock.advance(3)
    notifications.push("second")

    clock.advance(2.5)
    assert [n.text for n in notifications.active()] == ["second"]

    clock.advance(3)
    assert notifications.active() == []


def test_lifetime_is_independent_of_queue_depth(clock):
    queue = NotificationQueue(lifetime=5.0, max_entries=100, clock=clock)
    for i in range(50):
        queue.push(f"n{i}")
    clock.advance(4.9)
    assert len(queue.active()) == 50
    clock.advance(0.2)
    assert len(queue.active()) == 0


def test_duplicates_are_not_merged(notifications):
    notifications.push("same")
    notifications.push("same")
    assert [n.text for n in notifications.active()] == ["same", "same"]


def test_queue_is_bounded_dropping_oldest(clock):
    queue = NotificationQueue(max_entries=3, clock=clock)
    for i in range(5):
        queue.push(f"n{i}")
    assert [n.text for n in queue.active()] == ["n2", "n3", "n4"]


def test_levels_and_serialization(notifications, clock):
    entry = asyncio.run(notifications.error("disk full"))
    assert entry.level == NotificationLevel.ERROR
    assert entry.to_dict() == {
        "text": "disk full",
        "level": "error",
        "created_at": clock.now,
        "expires_at": clock.now + 5.0,
    }
    assert asyncio.run(notifications.success("ok")).level == NotificationLevel.SUCCESS


def test_posted_entries_are_relayed_with_their_level(clock):
    broker = EventBroker()
    queue = NotificationQueue(clock=clock, broker=broker)

    async def scenario():
        await queue.error("Error loading configuration")
        await queue.post("tail line")
        return await broker.get_history()

    history = asyncio.run(scenario())
    assert len(queue) == 2
    # info entries are relayed without being logged
    assert [(e.type, e.details["text"], e.details["level"]) for e in history] == [
        (EventType.NOTIFICATION, "Error loading configuration", "error"),
    ]


def test_post_without_broker_only_queues(notifications):
    asyncio.run(notifications.post("quiet"))
    assert [n.text for n in notifications.active()] == ["quiet"]
