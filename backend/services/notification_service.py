"""
Real-time clinician notifications.

Events are pushed to per-clinician subscribers (the SSE stream in api/routes/events.py).
Delivery is at-most-once and fire-and-forget: state changes are committed before an
event is published, and a failed or dropped publish never propagates to the caller.
"""
import asyncio
import json
import threading
from collections.abc import AsyncIterator
from typing import Any

from core.config import settings
from core.logging import get_logger

logger = get_logger(__name__)

EVENT_NEW_ALERT = "new_alert"
EVENT_ALERT_UPDATED = "alert_updated"
EVENT_NEW_DAILY_LOG = "new_daily_log"


class Subscription:
    def __init__(self, clinician_id: str, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.clinician_id = clinician_id
        self.loop = loop
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)

    def offer(self, payload: dict[str, Any]) -> None:
        # Runs on the subscriber's loop.
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Subscriber queue full for clinician %s; dropped %s event", self.clinician_id, payload.get("type"))


class ClinicianEventHub:
    """
    Fan-out of events to every open stream of a clinician.
    `publish` may be called from worker threads (sync routes); it hands the payload
    to each subscriber's event loop with call_soon_threadsafe.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, clinician_id: str) -> Subscription:
        sub = Subscription(clinician_id, asyncio.get_running_loop(), self._queue_size)
        with self._lock:
            self._subscribers.setdefault(clinician_id, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.clinician_id)
            if not subs:
                return
            subs.discard(sub)
            if not subs:
                del self._subscribers[sub.clinician_id]

    def subscriber_count(self, clinician_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(clinician_id, ()))

    def publish(self, clinician_id: str, payload: dict[str, Any]) -> int:
        with self._lock:
            targets = list(self._subscribers.get(clinician_id, ()))

        handed_off = 0
        for sub in targets:
            try:
                sub.loop.call_soon_threadsafe(sub.offer, payload)
                handed_off += 1
            except RuntimeError:
                # Loop already closed: the stream went away without unsubscribing.
                logger.warning("Stale subscriber for clinician %s removed", clinician_id)
                self.unsubscribe(sub)
        return handed_off


event_hub = ClinicianEventHub(queue_size=settings.sse_queue_size)


def notify_clinician(clinician_id: str | None, event_type: str, data: dict[str, Any]) -> None:
    if not clinician_id:
        logger.debug("No assigned clinician; %s event skipped", event_type)
        return

    payload = {"type": event_type, **data}
    try:
        event_hub.publish(clinician_id, payload)
    except Exception:
        logger.warning("Failed to publish %s event to clinician %s", event_type, clinician_id, exc_info=True)


async def stream_events(clinician_id: str, keepalive_seconds: float) -> AsyncIterator[str]:
    """Server-sent-events body: one `data:` frame per event, comment frames while idle."""
    sub = event_hub.subscribe(clinician_id)
    try:
        while True:
            try:
                payload = await asyncio.wait_for(sub.queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(payload, default=str)}\n\n"
    finally:
        event_hub.unsubscribe(sub)
