"""WebSocket delivery of live queue and appointment events."""

import asyncio
from datetime import date
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from clinicflow.core.events import (
    EventBroadcaster,
    SessionChannel,
    appointment_topic,
    get_broadcaster,
    queue_topic,
)
from clinicflow.core.exceptions import AppException
from clinicflow.dependencies import CurrentActor, DatabaseSession
from clinicflow.services.appointment_service import AppointmentService
from clinicflow.services.queue_service import QueueService

router = APIRouter()

logger = structlog.get_logger(__name__)

Broadcaster = Annotated[EventBroadcaster, Depends(get_broadcaster)]


async def pump_channel(websocket: WebSocket, channel: SessionChannel) -> None:
    """Forward channel messages to the socket until the channel closes."""
    while True:
        message = await channel.get()
        if message is None:
            return
        await websocket.send_json(message)


async def _listen(websocket: WebSocket) -> None:
    # Client frames are ignored; reading surfaces the disconnect
    while True:
        await websocket.receive_text()


async def serve_topic(
    websocket: WebSocket,
    broadcaster: EventBroadcaster,
    topic: str,
) -> None:
    """
    Stream one topic to a connected client.

    The first frame tells the client the topic's current ``seq``; it should
    fetch a snapshot and apply only events after it. A client that falls
    behind is evicted and disconnected with 1013 (try again later).
    """
    channel = SessionChannel()
    broadcaster.subscribe(topic, channel)
    logger.info("live_session_opened", topic=topic, session=channel.id)

    await websocket.send_json(
        {"type": "subscribed", "topic": topic, "seq": broadcaster.last_seq(topic)}
    )

    sender = asyncio.create_task(pump_channel(websocket, channel))
    receiver = asyncio.create_task(_listen(websocket))
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        if sender in done and not receiver.done():
            await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unsubscribe_all(channel)
        channel.close()
        for task in (sender, receiver):
            task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)
        logger.info("live_session_closed", topic=topic, session=channel.id)


@router.websocket("/queues/{doctor_id}/{queue_date}")
async def live_queue(
    websocket: WebSocket,
    doctor_id: UUID,
    queue_date: date,
    current_actor: CurrentActor,
    db: DatabaseSession,
    broadcaster: Broadcaster,
) -> None:
    """Queue room: every ``QueueAdvanced`` event for one doctor-day."""
    try:
        await QueueService(db).check_room_access(current_actor, doctor_id, queue_date)
    except AppException as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return
    finally:
        await db.close()

    await websocket.accept()
    await serve_topic(websocket, broadcaster, queue_topic(doctor_id, queue_date))


@router.websocket("/appointments/{appointment_id}")
async def live_appointment(
    websocket: WebSocket,
    appointment_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
    broadcaster: Broadcaster,
) -> None:
    """Status updates for one appointment the caller can see."""
    try:
        await AppointmentService(db).get_appointment(current_actor, appointment_id)
    except AppException as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return
    finally:
        await db.close()

    await websocket.accept()
    await serve_topic(websocket, broadcaster, appointment_topic(appointment_id))
