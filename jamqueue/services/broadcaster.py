"""Fan-out broadcaster: per-(event, jam) publish/subscribe for live viewers.

One ``JamBroadcaster`` lives for the whole process: it is created on startup,
stored on ``app.state`` and handed to routes through ``get_broadcaster`` so
tests can swap it.  Each subscriber owns an outbound ``asyncio.Queue`` bound to
the event loop that created it; publishers (sync routes run in worker
threads) hand messages over with ``call_soon_threadsafe`` instead of touching
the transport directly.
"""
import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from fastapi import Request

logger = logging.getLogger(__name__)

HEARTBEAT = "heartbeat"

# Change-event types published by the services
SONG_CREATED = "song_created"
INSTRUMENT_SLOTS_UPDATED = "instrument_slots_updated"
SONGS_OPENED = "songs_opened"
SONGS_CLOSED = "songs_closed"
SONG_STATUS_CHANGED = "song_status_changed"
SONG_READY_CHANGED = "song_ready_changed"
SONG_ORDER_CHANGED = "song_order_changed"
SONG_DELETED = "song_deleted"
CANDIDATE_APPLIED = "candidate_applied"
CANDIDATE_APPROVED = "candidate_approved"
CANDIDATE_REJECTED = "candidate_rejected"
RATING_SUMMARY_UPDATED = "rating_summary_updated"


@dataclass(frozen=True)
class BroadcastMessage:
    type: str
    data: str  # JSON text of {"type": ..., "payload": ...}; empty for heartbeats

    def decoded(self) -> dict[str, Any]:
        return json.loads(self.data) if self.data else {}


_CLOSED = object()


class SubscriptionClosed(Exception):
    """Raised when sending to a subscription that has already been closed."""


class Subscription:
    """A live subscriber handle on one (event, jam) channel."""

    def __init__(self, event_id: str, jam_id: str, loop: asyncio.AbstractEventLoop):
        self.event_id = event_id
        self.jam_id = jam_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self._loop = loop
        self._heartbeat_task: Optional[asyncio.Task] = None

    @property
    def channel(self) -> tuple[str, str]:
        return (self.event_id, self.jam_id)

    def send(self, message: BroadcastMessage) -> None:
        """Queue a message for delivery; safe to call from any thread."""
        if self.closed:
            raise SubscriptionClosed(f"Subscription on {self.channel} is closed")
        self._loop.call_soon_threadsafe(self.queue.put_nowait, message)

    def close(self) -> None:
        """Stop the heartbeat and end ``messages()``. Idempotent."""
        if self.closed:
            return
        self.closed = True
        try:
            if self._heartbeat_task is not None:
                self._loop.call_soon_threadsafe(self._heartbeat_task.cancel)
            self._loop.call_soon_threadsafe(self.queue.put_nowait, _CLOSED)
        except RuntimeError:
            # Loop already gone, nobody is left to read the queue
            logger.debug("Event loop closed before subscription on %s could be woken", self.channel)

    async def messages(self) -> AsyncIterator[BroadcastMessage]:
        """Yield queued messages (heartbeats included) until the handle is closed."""
        while True:
            message = await self.queue.get()
            if message is _CLOSED:
                return
            yield message


class JamBroadcaster:
    """Registry of subscribers keyed by (event_id, jam_id)."""

    def __init__(self, heartbeat_interval: float = 30.0):
        self.heartbeat_interval = heartbeat_interval
        self._channels: dict[tuple[str, str], set[Subscription]] = {}
        # Held across a whole publish so every subscriber sees one channel's
        # messages in the same order
        self._lock = threading.RLock()

    async def subscribe(self, event_id: str, jam_id: str) -> Subscription:
        loop = asyncio.get_running_loop()
        subscription = Subscription(str(event_id), str(jam_id), loop)
        with self._lock:
            subscribers = self._channels.setdefault(subscription.channel, set())
            subscribers.add(subscription)
            total = len(subscribers)
        subscription._heartbeat_task = loop.create_task(self._heartbeat(subscription))
        logger.info("Subscriber joined jam %s of event %s (%d live)", jam_id, event_id, total)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscriber. Safe to call repeatedly and from any thread."""
        with self._lock:
            subscribers = self._channels.get(subscription.channel)
            removed = subscribers is not None and subscription in subscribers
            if removed:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._channels[subscription.channel]
        subscription.close()
        if removed:
            logger.info("Subscriber left jam %s of event %s", subscription.jam_id, subscription.event_id)

    def publish(self, event_id: str, jam_id: str, event_type: str, payload: dict[str, Any]) -> int:
        """Deliver ``{type, payload}`` to every live subscriber of the channel.

        Returns the number of subscribers the message was handed to.  Failing
        subscribers are dropped; delivery problems never reach the caller.
        """
        channel = (str(event_id), str(jam_id))
        message = BroadcastMessage(
            type=event_type,
            data=json.dumps({"type": event_type, "payload": payload}, default=str),
        )
        delivered = 0
        dead: list[Subscription] = []
        with self._lock:
            for subscription in list(self._channels.get(channel, ())):
                try:
                    subscription.send(message)
                    delivered += 1
                except (RuntimeError, SubscriptionClosed) as exc:
                    logger.warning("Dropping subscriber on jam %s: %s", jam_id, exc)
                    dead.append(subscription)
            for subscription in dead:
                self.unsubscribe(subscription)
        logger.debug("Published %s to jam %s (%d delivered)", event_type, jam_id, delivered)
        return delivered

    def subscriber_count(self, event_id: str, jam_id: str) -> int:
        with self._lock:
            return len(self._channels.get((str(event_id), str(jam_id)), ()))

    def shutdown(self) -> None:
        """Close every live subscription; used on application shutdown."""
        with self._lock:
            subscriptions = [s for subscribers in self._channels.values() for s in subscribers]
            self._channels.clear()
        for subscription in subscriptions:
            subscription.close()
        logger.info("Broadcaster shut down, closed %d subscriber(s)", len(subscriptions))

    async def _heartbeat(self, subscription: Subscription) -> None:
        try:
            while not subscription.closed:
                await asyncio.sleep(self.heartbeat_interval)
                if subscription.closed:
                    break
                subscription.queue.put_nowait(BroadcastMessage(type=HEARTBEAT, data=""))
        except asyncio.CancelledError:
            pass


def publish_for_jam(broadcaster: JamBroadcaster, jam, event_type: str, payload: dict[str, Any]) -> int:
    return broadcaster.publish(jam.event_id, jam.jam_id, event_type, payload)


def get_broadcaster(request: Request) -> JamBroadcaster:
    """FastAPI dependency: the process-wide broadcaster created on startup."""
    return request.app.state.broadcaster
