import asyncio

import pytest

from nexus_dashboard.notifications import NotificationQueue


@pytest.mark.asyncio
async def test_notification_expires_after_ttl():
    queue = NotificationQueue(ttl=0.05)
    note_id = queue.push("x")
    assert note_id in queue

    await asyncio.sleep(0.1)
    assert note_id not in queue
    assert queue.items == ()


@pytest.mark.asyncio
async def test_dismiss_is_idempotent():
    queue = NotificationQueue(ttl=5)
    note_id = queue.push("Data refreshed")

    assert queue.dismiss(note_id) is True
    assert queue.dismiss(note_id) is False
    assert queue.dismiss("never-existed") is False
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_dismiss_after_expiry_is_harmless():
    queue = NotificationQueue(ttl=0.01)
    note_id = queue.push("short")
    await asyncio.sleep(0.05)

    assert queue.dismiss(note_id) is False


@pytest.mark.asyncio
async def test_cap_evicts_oldest_first():
    queue = NotificationQueue(ttl=5, max_size=3)
    ids = [queue.push(f"note {i}") for i in range(5)]

    assert [n.text for n in queue.items] == ["note 2", "note 3", "note 4"]
    assert ids[0] not in queue
    queue.close()


@pytest.mark.asyncio
async def test_single_slot_queue_replaces_and_expires():
    queue = NotificationQueue(ttl=0.05, max_size=1)
    queue.push("first")
    second = queue.push("second")

    assert [n.text for n in queue.items] == ["second"]
    await asyncio.sleep(0.1)
    assert second not in queue


@pytest.mark.asyncio
async def test_items_keep_push_order_and_level():
    queue = NotificationQueue(ttl=5)
    queue.push("ok")
    queue.push("failed", level="error")

    items = queue.items
    assert [n.text for n in items] == ["ok", "failed"]
    assert [n.level for n in items] == ["info", "error"]
    assert len({n.id for n in items}) == 2
    queue.close()
    assert queue.items == ()


def test_push_requires_running_loop():
    queue = NotificationQueue()
    with pytest.raises(RuntimeError):
        queue.push("outside the loop")


def test_rejects_empty_capacity():
    with pytest.raises(ValueError):
        NotificationQueue(max_size=0)


@pytest.mark.parametrize("ttl", [0, -1])
def test_rejects_notifications_that_never_expire(ttl):
    with pytest.raises(ValueError):
        NotificationQueue(ttl=ttl)
