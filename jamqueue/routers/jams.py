"""Jam routes: creation, staff overview, default jam lookup and the live stream."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from jamqueue.database import get_db
from jamqueue.models.jam import Jam
from jamqueue.schemas.jam import DefaultJamOut, JamCreate, JamOut
from jamqueue.services import guest_service, jam_service, queue_views
from jamqueue.services.broadcaster import HEARTBEAT, JamBroadcaster, get_broadcaster

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{event_id}/jams", response_model=JamOut, status_code=status.HTTP_201_CREATED)
def create_jam(
    event_id: str,
    payload: JamCreate,
    actor_user_id: Optional[str] = Query(None, description="Staff user creating the jam"),
    db: Session = Depends(get_db),
):
    """Create a jam inside an event."""
    jam = jam_service.create_jam(
        db,
        event_id=event_id,
        name=payload.name,
        slug=payload.slug,
        notes=payload.notes,
        status=payload.status,
        order_index=payload.order_index,
    )
    logger.info("Jam %s created by %s", jam.jam_id, actor_user_id)
    return jam


@router.get("/{event_id}/jams")
def list_jams(event_id: str, db: Session = Depends(get_db)):
    """Staff overview: every jam with its songs, candidate buckets and rating summary."""
    return queue_views.jam_overview(db, event_id)


@router.get("/{event_id}/jam", response_model=DefaultJamOut)
def default_jam(event_id: str, user_id: str = Query(...), db: Session = Depends(get_db)):
    """The jam a checked-in guest should follow; ``jam_id`` is null when the event has none."""
    guest_service.resolve_checked_in_guest(db, event_id, user_id)
    jam = jam_service.first_jam(db, event_id)
    return {"jam_id": jam.jam_id if jam else None}


def _stream_jam(event_id: str, jam_id: str, db: Session = Depends(get_db)) -> Jam:
    return jam_service.get_jam(db, event_id, jam_id)


@router.get("/{event_id}/jams/{jam_id}/stream")
async def stream_jam(
    jam: Jam = Depends(_stream_jam),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Server-Sent Events feed of every change published for this jam."""
    subscription = await broadcaster.subscribe(jam.event_id, jam.jam_id)

    async def event_generator():
        try:
            async for message in subscription.messages():
                if message.type == HEARTBEAT:
                    yield {"comment": "ping"}
                else:
                    yield {"event": message.type, "data": message.data}
        finally:
            broadcaster.unsubscribe(subscription)

    return EventSourceResponse(event_generator())
