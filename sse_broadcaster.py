"""
SSE Broadcaster - pushes graduate snapshots, updates and pings to live subscribers
"""

import asyncio
import itertools
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

from config import SNAPSHOT_SIZE, SSE_PING_INTERVAL, SSE_QUEUE_SIZE
from models import GraduationRecord
from scheduler import ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

CONNECTED_COMMENT = ":connected\n\n"

_subscriber_ids = itertools.count(1)


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class SubscriberClosed(Exception):
    pass


class Subscriber:
    """One SSE client: a bounded outbound queue plus last-activity time"""

    def __init__(self, queue_size: int = SSE_QUEUE_SIZE):
        self.id = next(_subscriber_ids)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.connected_at = time.time()
        self.last_activity = self.connected_at
        self.closed = False

    def send(self, message: str):
        """Queue one SSE frame. Raises when closed or when the client lags too far."""
        if self.closed:
            raise SubscriberClosed(f"subscriber {self.id} is closed")
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            raise SubscriberClosed(f"subscriber {self.id} is not reading")
        self.last_activity = time.time()

    def close(self):
        if self.closed:
            return
        self.closed = True
        # wake a reader blocked on get()
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def stream(self) -> AsyncIterator[str]:
        while True:
            message = await self.queue.get()
            if message is None:
                return
            yield message
            if self.closed and self.queue.empty():
                return


class GraduateBroadcaster:
    """Registry of live SSE subscribers.

    A subscriber whose send fails is dropped on the spot; pings go through
    the same path so dead clients are cleaned up even when nothing graduates.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        snapshot_provider: Callable[[int], List[GraduationRecord]],
        snapshot_size: int = SNAPSHOT_SIZE,
        ping_interval: float = SSE_PING_INTERVAL,
        queue_size: int = SSE_QUEUE_SIZE,
    ):
        self.scheduler = scheduler
        self.snapshot_provider = snapshot_provider
        self.snapshot_size = snapshot_size
        self.ping_interval = ping_interval
        self.queue_size = queue_size
        self.subscribers: Set[Subscriber] = set()
        self._ping_task: Optional[ScheduledTask] = None

        # Statistics
        self.messages_sent = 0
        self.subscribers_dropped = 0

    def start(self):
        if self._ping_task and self._ping_task.active:
            return
        self._ping_task = self.scheduler.call_every(self.ping_interval, self.ping, name='sse-ping')

    def stop(self):
        if self._ping_task:
            self._ping_task.cancel()
            self._ping_task = None
        for subscriber in list(self.subscribers):
            subscriber.close()
        self.subscribers.clear()

    def subscribe(self) -> Subscriber:
        """Register a client and queue the current snapshot for it"""
        subscriber = Subscriber(self.queue_size)
        snapshot = [r.to_dict() for r in self.snapshot_provider(self.snapshot_size)]
        subscriber.send(CONNECTED_COMMENT)
        subscriber.send(format_event({'type': 'graduates', 'data': snapshot}))
        self.subscribers.add(subscriber)
        logger.info(f"📺 SSE client {subscriber.id} connected ({len(self.subscribers)} total)")
        return subscriber

    def unsubscribe(self, subscriber: Subscriber):
        subscriber.close()
        if subscriber in self.subscribers:
            self.subscribers.discard(subscriber)
            logger.info(f"📺 SSE client {subscriber.id} disconnected ({len(self.subscribers)} total)")

    def broadcast(self, payload: Dict[str, Any]) -> int:
        """Send to every subscriber, dropping any that fail. Returns deliveries."""
        message = format_event(payload)
        delivered = 0
        for subscriber in list(self.subscribers):
            try:
                subscriber.send(message)
                delivered += 1
            except SubscriberClosed as e:
                logger.debug(f"Dropping SSE client: {e}")
                self.subscribers.discard(subscriber)
                subscriber.close()
                self.subscribers_dropped += 1
        self.messages_sent += delivered
        return delivered

    def broadcast_graduate(self, record: GraduationRecord) -> int:
        return self.broadcast({'type': 'newGraduate', 'data': record.to_dict()})

    def broadcast_clear(self) -> int:
        return self.broadcast({'type': 'clear'})

    async def ping(self):
        self.broadcast({'type': 'ping', 't': int(self.scheduler.now() * 1000)})

    def __len__(self) -> int:
        return len(self.subscribers)
