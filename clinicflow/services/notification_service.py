"""Hand-off of domain events to the external notification dispatcher."""

import json

import redis
import structlog

from clinicflow.config import settings
from clinicflow.schemas.events import DomainEvent

logger = structlog.get_logger(__name__)


class NotificationService:
    """
    Append domain events to the dispatcher's Redis stream.

    The dispatcher decides the delivery channel (email, SMS, push); the core
    only records what happened. The stream is capped so an absent consumer
    cannot grow it without bound.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream: str | None = None,
        maxlen: int | None = None,
    ):
        """Initialize service with Redis client and stream settings."""
        self.redis = redis_client
        self.stream = stream or settings.notification_stream
        self.maxlen = maxlen or settings.notification_stream_maxlen

    def dispatch(self, event: DomainEvent) -> str:
        """
        Append one event to the stream.

        Args:
            event: Committed domain event

        Returns:
            Stream entry ID assigned by Redis

        Raises:
            redis.RedisError: If Redis is unreachable
        """
        payload = event.to_payload()
        entry_id = self.redis.xadd(
            self.stream,
            {
                "type": event.event_type,
                "payload": json.dumps(payload, default=str),
            },
            maxlen=self.maxlen,
            approximate=True,
        )

        logger.info(
            "event_dispatched",
            event_type=event.event_type,
            stream=self.stream,
            entry_id=entry_id,
        )

        return str(entry_id)
