import asyncio
import json
from datetime import datetime, timedelta

import pytest

from utils.realtime import (
    ORDER_STATUS_UPDATE,
    RealtimeHub,
    TooManyConnections,
    build_event,
    emit_realtime_event,
    event_stream,
    hub,
)


class FakeRequest:
    def __init__(self, disconnected: bool = False):
        self.disconnected = disconnected

    async def is_disconnected(self):
        return self.disconnected


def _frames(raw):
    return [json.loads(f["data"]) for f in raw]


def test_targeted_events_reach_only_that_user():
    registry = RealtimeHub()
    alice = registry.subscribe("alice")
    alice_phone = registry.subscribe("alice")
    bob = registry.subscribe("bob")

    sent = registry.send_to_user("alice", build_event("notification.new", {"n": 1}, "alice"))

    assert sent == 2
    assert alice.queue.qsize() == alice_phone.queue.qsize() == 1
    assert bob.queue.empty()


def test_broadcast_respects_event_owner():
    registry = RealtimeHub()
    alice = registry.subscribe("alice")
    anonymous = registry.subscribe()

    assert registry.broadcast(build_event("notification.new", {}, "alice")) == 1
    assert registry.broadcast(build_event("notification.new", {})) == 2
    assert anonymous.queue.qsize() == 1
    assert alice.queue.qsize() == 2


def test_connection_limit():
    registry = RealtimeHub(max_connections=1)
    registry.subscribe("a")

    with pytest.raises(TooManyConnections) as exc:
        registry.subscribe("b")
    assert exc.value.status_code == 503


def test_full_queue_drops_events():
    registry = RealtimeHub(queue_size=1)
    sub = registry.subscribe("a")

    assert registry.send_to_user("a", build_event("x", {})) == 1
    assert registry.send_to_user("a", build_event("x", {})) == 0
    assert sub.message_count == 1


def test_idle_cleanup_and_metrics():
    registry = RealtimeHub(idle_timeout_seconds=60)
    stale = registry.subscribe("a")
    fresh = registry.subscribe("b")
    now = datetime.utcnow()
    stale.last_activity = now - timedelta(minutes=5)
    registry.send_to_user("b", build_event("x", {}))

    assert registry.cleanup_idle(now) == 1
    assert registry.get(stale.id) is None
    # the stream is woken with the sentinel
    assert stale.queue.get_nowait() is None

    metrics = registry.get_metrics(now)
    assert metrics["total_connections"] == 1
    assert metrics["connections_by_user"] == {"b": 1}
    assert metrics["total_messages"] == fresh.message_count == 1


def test_emit_uses_global_hub():
    sub = hub.subscribe("user-1")

    assert emit_realtime_event("notification.new", {"title": "hi"}, user_id="user-1") == 1
    event = sub.queue.get_nowait()
    assert event["type"] == "notification.new"
    assert event["user_id"] == "user-1"
    assert event["data"] == {"title": "hi"}


async def _drain(stream):
    return [frame async for frame in stream]


async def test_stream_replays_snapshot_then_filtered_live_events():
    registry = RealtimeHub()
    snapshot = [build_event(ORDER_STATUS_UPDATE, {"order_id": "a", "status": "PENDING"}, "u1")]
    stream = event_stream(
        FakeRequest(),
        "u1",
        snapshot,
        accept=lambda e: e["data"]["order_id"] == "a",
        registry=registry,
    )

    frames = [await stream.__anext__(), await stream.__anext__()]
    assert registry.get_subscriber_count() == 1

    registry.send_to_user("u1", build_event(ORDER_STATUS_UPDATE, {"order_id": "a", "status": "SHIPPED"}, "u1"))
    registry.send_to_user("u1", build_event(ORDER_STATUS_UPDATE, {"order_id": "b", "status": "SHIPPED"}, "u1"))
    registry.close_all()
    frames += await asyncio.wait_for(_drain(stream), timeout=2)

    frames = _frames(frames)
    assert [f["type"] for f in frames] == ["connected", ORDER_STATUS_UPDATE, ORDER_STATUS_UPDATE]
    assert [f["data"]["status"] for f in frames[1:]] == ["PENDING", "SHIPPED"]


async def test_stream_ends_when_dropped_with_a_full_queue():
    registry = RealtimeHub(queue_size=1)
    stream = event_stream(FakeRequest(), "u1", registry=registry)
    connected = json.loads((await stream.__anext__())["data"])

    assert registry.send_to_user("u1", build_event("x", {}, "u1")) == 1
    registry.unsubscribe(connected["subscriber_id"])

    assert await asyncio.wait_for(_drain(stream), timeout=2) == []
    assert registry.get_subscriber_count() == 0


async def test_stream_holds_no_slot_until_iterated():
    registry = RealtimeHub(max_connections=1)
    stream = event_stream(FakeRequest(), "u1", registry=registry)

    assert registry.get_subscriber_count() == 0
    await stream.aclose()
    assert registry.get_subscriber_count() == 0


async def test_stream_stops_on_disconnect_and_unsubscribes():
    registry = RealtimeHub()

    frames = _frames(await _drain(event_stream(FakeRequest(disconnected=True), "u1", registry=registry)))

    assert [f["type"] for f in frames] == ["connected"]
    assert registry.get_subscriber_count() == 0


async def test_stream_requires_auth(client):
    res = await client.get("/api/realtime/stream")

    assert res.status_code == 401
    assert res.json() == {
        "success": False,
        "error": "Authentication required / Autentifikasiya tələb olunur",
    }


async def test_metrics_are_admin_only(client, make_user, auth):
    admin = await make_user("admin")
    customer = await make_user("customer")
    hub.subscribe(customer["_id"])

    ok = await client.get("/api/admin/realtime/metrics", headers=auth(admin))
    denied = await client.get("/api/admin/realtime/metrics", headers=auth(customer))

    assert ok.json()["data"]["total_connections"] == 1
    assert denied.status_code == 403
