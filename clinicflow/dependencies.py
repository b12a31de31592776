"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

import redis
import structlog
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.core.clock import Clock, get_clock
from clinicflow.core.events import get_broadcaster
from clinicflow.core.redis_client import CacheManager, get_redis_client
from clinicflow.database import get_db
from clinicflow.schemas.actors import Actor, ActorRole
from clinicflow.services.event_publisher import EventPublisher
from clinicflow.services.notification_service import NotificationService


async def get_current_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """
    Read the verified caller identity forwarded by the gateway.

    Args:
        x_actor_id: ``X-Actor-Id`` header (UUID)
        x_actor_role: ``X-Actor-Role`` header (PATIENT, DOCTOR, STAFF, SYSTEM)

    Returns:
        Actor making the request

    Raises:
        HTTPException: If either header is missing or malformed
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor identity",
        )

    try:
        actor_id = UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid actor ID format",
        )

    try:
        role = ActorRole(x_actor_role.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown actor role: {x_actor_role}",
        )

    structlog.contextvars.bind_contextvars(actor_id=str(actor_id), actor_role=role.value)
    return Actor(id=actor_id, role=role)


def get_cache_manager(
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> CacheManager:
    """Cache manager over the shared Redis client."""
    return CacheManager(redis_client)


def get_event_publisher(
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> EventPublisher:
    """Publisher feeding live sessions and the notification stream."""
    return EventPublisher(get_broadcaster(), NotificationService(redis_client))


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Cache = Annotated[CacheManager, Depends(get_cache_manager)]
Publisher = Annotated[EventPublisher, Depends(get_event_publisher)]
AppClock = Annotated[Clock, Depends(get_clock)]
