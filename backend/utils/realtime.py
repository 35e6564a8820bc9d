import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from config.env import SSE_MAX_CONNECTIONS, SSE_IDLE_TIMEOUT_SECONDS, SSE_QUEUE_SIZE
from utils.errors import AppError
from utils.serializers import serialize_doc

logger = logging.getLogger(__name__)

# ============================================================
# EVENT TYPES
# ============================================================

ORDER_STATUS_UPDATE = "order.status.update"
ORDER_UPDATE = "order.update"
ORDER_NEW = "order.new"
NOTIFICATION_NEW = "notification.new"
CHAT_ROOM_CREATED = "chat.room.created"
CHAT_ROOM_ASSIGNED = "chat.room.assigned"
CHAT_ROOM_CLOSED = "chat.room.closed"
CHAT_MESSAGE_NEW = "chat.message.new"
CHAT_MESSAGES_READ = "chat.messages.read"
CHAT_TYPING = "chat.typing"

EVENT_TYPES = {
    ORDER_STATUS_UPDATE,
    ORDER_UPDATE,
    ORDER_NEW,
    NOTIFICATION_NEW,
    CHAT_ROOM_CREATED,
    CHAT_ROOM_ASSIGNED,
    CHAT_ROOM_CLOSED,
    CHAT_MESSAGE_NEW,
    CHAT_MESSAGES_READ,
    CHAT_TYPING,
}

KEEPALIVE_SECONDS = 15


class TooManyConnections(AppError):
    status_code = 503
    default_message = "Max connections reached / Maksimum bağlantı sayına çatdı"


@dataclass
class Subscriber:
    id: str
    user_id: str | None
    queue: asyncio.Queue
    connected_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)
    message_count: int = 0


def build_event(event_type: str, data, user_id=None) -> dict:
    return {
        "type": event_type,
        "data": serialize_doc(data),
        "timestamp": datetime.utcnow().isoformat(),
        "user_id": str(user_id) if user_id else None,
    }


# ============================================================
# HUB (in-process SSE fan-out)
# ============================================================

class RealtimeHub:
    """
    Connection registry for Server-Sent Events.

    Each subscriber owns a bounded queue; delivery is best effort and
    events for a full queue are dropped. No backfill beyond what the
    stream handler replays on connect.
    """

    def __init__(
        self,
        max_connections: int = SSE_MAX_CONNECTIONS,
        idle_timeout_seconds: int = SSE_IDLE_TIMEOUT_SECONDS,
        queue_size: int = SSE_QUEUE_SIZE,
    ):
        self.max_connections = max_connections
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self.queue_size = queue_size
        self._subscribers: dict[str, Subscriber] = {}
        self._ids = itertools.count(1)

    def check_capacity(self) -> None:
        if len(self._subscribers) >= self.max_connections:
            logger.warning(
                "SSE_MAX_CONNECTIONS reached max=%s current=%s",
                self.max_connections,
                len(self._subscribers),
            )
            raise TooManyConnections()

    def subscribe(self, user_id=None) -> Subscriber:
        self.check_capacity()

        sub = Subscriber(
            id=f"subscriber_{next(self._ids)}",
            user_id=str(user_id) if user_id else None,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        self._subscribers[sub.id] = sub
        logger.info("SSE subscriber added id=%s user=%s total=%s", sub.id, sub.user_id, len(self._subscribers))
        return sub

    def unsubscribe(self, subscriber_id: str) -> None:
        sub = self._subscribers.pop(subscriber_id, None)
        if sub is None:
            return

        # wake the stream so it can exit; a full queue gives up its oldest event
        if sub.queue.full():
            sub.queue.get_nowait()
        sub.queue.put_nowait(None)

        logger.info("SSE subscriber removed id=%s user=%s total=%s", sub.id, sub.user_id, len(self._subscribers))

    def get(self, subscriber_id: str) -> Subscriber | None:
        return self._subscribers.get(subscriber_id)

    def _deliver(self, sub: Subscriber, event: dict) -> bool:
        try:
            sub.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("SSE_QUEUE_FULL subscriber=%s event=%s", sub.id, event.get("type"))
            return False

        sub.last_activity = datetime.utcnow()
        sub.message_count += 1
        return True

    def broadcast(self, event: dict) -> int:
        target = event.get("user_id")
        sent = 0

        for sub in list(self._subscribers.values()):
            # user-targeted events never leak to other connections
            if target and sub.user_id != target:
                continue
            if self._deliver(sub, event):
                sent += 1

        logger.debug("SSE broadcast type=%s sent=%s total=%s", event.get("type"), sent, len(self._subscribers))
        return sent

    def send_to_user(self, user_id, event: dict) -> int:
        user_id = str(user_id)
        sent = 0

        for sub in list(self._subscribers.values()):
            if sub.user_id == user_id and self._deliver(sub, event):
                sent += 1

        logger.debug("SSE send_to_user user=%s type=%s sent=%s", user_id, event.get("type"), sent)
        return sent

    def get_subscriber_count(self) -> int:
        return len(self._subscribers)

    def close_all(self) -> int:
        ids = list(self._subscribers)
        for subscriber_id in ids:
            self.unsubscribe(subscriber_id)
        return len(ids)

    def get_metrics(self, now: datetime | None = None) -> dict:
        now = now or datetime.utcnow()
        subs = list(self._subscribers.values())

        by_user: dict[str, int] = {}
        total_duration = 0.0
        total_messages = 0

        for sub in subs:
            if sub.user_id:
                by_user[sub.user_id] = by_user.get(sub.user_id, 0) + 1
            total_duration += (now - sub.connected_at).total_seconds()
            total_messages += sub.message_count

        count = len(subs)
        return {
            "total_connections": count,
            "connections_by_user": by_user,
            "average_connection_seconds": round(total_duration / count, 2) if count else 0,
            "average_messages_per_connection": round(total_messages / count, 2) if count else 0,
            "total_messages": total_messages,
        }

    def cleanup_idle(self, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        idle = [
            sub.id for sub in self._subscribers.values()
            if now - sub.last_activity > self.idle_timeout
        ]

        for subscriber_id in idle:
            self.unsubscribe(subscriber_id)

        if idle:
            logger.info("SSE idle cleanup removed=%s remaining=%s", len(idle), len(self._subscribers))
        return len(idle)


hub = RealtimeHub()


def emit_realtime_event(event_type: str, data, user_id=None) -> int:
    """
    Push an event to one user's connections, or to everyone when no
    user id is given. Never raises: realtime delivery must not break
    the request that triggered it.
    """
    event = build_event(event_type, data, user_id)

    try:
        if user_id:
            return hub.send_to_user(user_id, event)
        return hub.broadcast(event)
    except Exception:
        logger.exception("SSE_EMIT_ERROR type=%s", event_type)
        return 0


# ============================================================
# STREAM
# ============================================================

def format_sse(event: dict) -> dict:
    return {"data": json.dumps(event)}


async def event_stream(
    request,
    user_id,
    initial_events=None,
    *,
    accept=None,
    registry: RealtimeHub | None = None,
):
    """
    Async generator feeding `EventSourceResponse`.

    Subscribes on first iteration, sends a `connected` event, replays
    `initial_events` once, then relays queued events until the client
    disconnects or the hub drops the subscriber. `accept(event)` narrows
    which live events are relayed.
    """
    registry = registry or hub
    subscriber = registry.subscribe(user_id)

    try:
        yield format_sse({
            "type": "connected",
            "subscriber_id": subscriber.id,
            "timestamp": datetime.utcnow().isoformat(),
        })

        for event in initial_events or []:
            yield format_sse(event)

        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected subscriber=%s", subscriber.id)
                break

            try:
                event = await asyncio.wait_for(subscriber.queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                if registry.get(subscriber.id) is None:
                    break
                continue

            if event is None:
                break

            if accept is not None and not accept(event):
                continue

            yield format_sse(event)
    finally:
        registry.unsubscribe(subscriber.id)
