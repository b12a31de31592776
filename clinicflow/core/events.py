"""In-process fan-out of domain events to live client sessions."""

import asyncio
import itertools
from datetime import date
from typing import Any
from uuid import UUID

import structlog

from clinicflow.config import settings
from clinicflow.core.metrics import LIVE_SESSIONS_EVICTED

logger = structlog.get_logger(__name__)

_session_ids = itertools.count(1)


def queue_topic(doctor_id: UUID | str, queue_date: date | str) -> str:
    """Topic for one doctor's queue on one day (the queue room)."""
    return f"queue:{doctor_id}:{queue_date}"


def appointment_topic(appointment_id: UUID | str) -> str:
    """Topic for one appointment's status updates."""
    return f"appointment:{appointment_id}"


class SessionChannel:
    """
    Bounded mailbox for one connected client session.

    ``offer`` never blocks. When the buffer is full the broadcaster evicts
    the session rather than wait for it, so delivery is at-most-once.
    """

    def __init__(self, maxsize: int | None = None):
        """Initialize channel with a bounded buffer."""
        self.id = next(_session_ids)
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(
            maxsize=maxsize or settings.live_channel_buffer
        )
        self.closed = False

    def offer(self, message: dict[str, Any]) -> bool:
        """Queue a message; return False if the session cannot take it."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self) -> dict[str, Any] | None:
        """Wait for the next message; None once the channel is closed and drained."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Close the channel, waking any pending reader."""
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Reader is behind; drop one buffered message to make room for the sentinel
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    def pending(self) -> int:
        """Number of undelivered messages."""
        return self._queue.qsize()


class EventBroadcaster:
    """
    Topic based publish/subscribe for live sessions.

    ``publish`` is synchronous: it runs to completion on the event loop
    without yielding, so messages on one topic reach every subscriber in
    publish order. Each message carries a per-topic ``seq`` so clients can
    spot gaps and refetch a snapshot. Nothing is retained for replay.
    """

    def __init__(self) -> None:
        """Initialize broadcaster with no topics."""
        self._topics: dict[str, dict[int, SessionChannel]] = {}
        self._sequences: dict[str, int] = {}

    def subscribe(self, topic: str, channel: SessionChannel) -> None:
        """Register a session on a topic."""
        self._topics.setdefault(topic, {})[channel.id] = channel
        logger.debug("live_session_subscribed", topic=topic, session=channel.id)

    def unsubscribe(self, topic: str, channel: SessionChannel) -> None:
        """Remove a session from a topic."""
        subscribers = self._topics.get(topic)
        if not subscribers:
            return
        subscribers.pop(channel.id, None)
        if not subscribers:
            del self._topics[topic]

    def unsubscribe_all(self, channel: SessionChannel) -> None:
        """Remove a session from every topic."""
        for topic in list(self._topics):
            self.unsubscribe(topic, channel)

    def publish(self, topic: str, event: dict[str, Any]) -> int:
        """
        Deliver an event to every current subscriber of a topic.

        Args:
            topic: Topic name
            event: JSON-serializable event body

        Returns:
            Number of sessions the event was queued for
        """
        seq = self._sequences.get(topic, 0) + 1
        self._sequences[topic] = seq
        message = {"topic": topic, "seq": seq, "event": event}

        delivered = 0
        for channel in list(self._topics.get(topic, {}).values()):
            if channel.offer(message):
                delivered += 1
                continue
            # Slow or closed consumer: evict instead of blocking the publisher
            self.unsubscribe_all(channel)
            channel.close()
            LIVE_SESSIONS_EVICTED.inc()
            logger.warning("live_session_evicted", topic=topic, session=channel.id)

        return delivered

    def subscriber_count(self, topic: str) -> int:
        """Number of sessions subscribed to a topic."""
        return len(self._topics.get(topic, {}))

    def topic_count(self) -> int:
        """Number of topics with at least one subscriber."""
        return len(self._topics)

    def last_seq(self, topic: str) -> int:
        """Sequence number of the last event published on a topic."""
        return self._sequences.get(topic, 0)


# Global broadcaster instance
_broadcaster: EventBroadcaster | None = None


def get_broadcaster() -> EventBroadcaster:
    """Get or create the process-wide broadcaster."""
    global _broadcaster

    if _broadcaster is None:
        _broadcaster = EventBroadcaster()

    return _broadcaster
