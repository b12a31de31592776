"""Publication of committed domain events."""

import structlog

from clinicflow.core.events import EventBroadcaster
from clinicflow.schemas.events import DomainEvent
from clinicflow.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)


class EventPublisher:
    """
    Route a domain event to live topics and to the notification dispatcher.

    Called after the mutation has committed. Failures are logged and never
    propagate: the database is the source of truth and clients reconcile by
    refetching a snapshot.
    """

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        notifier: NotificationService | None = None,
    ):
        """Initialize publisher with broadcaster and optional dispatcher hand-off."""
        self.broadcaster = broadcaster
        self.notifier = notifier

    async def publish(self, event: DomainEvent) -> None:
        """
        Publish an event to every topic it belongs to, then hand it off.

        Args:
            event: Committed domain event
        """
        payload = event.to_payload()

        for topic in event.topics():
            try:
                delivered = self.broadcaster.publish(topic, payload)
                logger.debug(
                    "event_broadcast",
                    event_type=event.event_type,
                    topic=topic,
                    delivered=delivered,
                )
            except Exception as e:
                logger.warning(
                    "event_broadcast_failed",
                    event_type=event.event_type,
                    topic=topic,
                    error=str(e),
                )

        if self.notifier is None:
            return

        try:
            self.notifier.dispatch(event)
        except Exception as e:
            # Log error but don't fail the request
            logger.warning(
                "event_dispatch_failed",
                event_type=event.event_type,
                error=str(e),
            )
