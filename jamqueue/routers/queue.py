"""Guest-facing queue reads: open songs, my on-stage songs, queue position."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from jamqueue.database import get_db
from jamqueue.exceptions import NotFound
from jamqueue.services import guest_service, jam_service, queue_ordering, queue_views

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{event_id}/jams/{jam_id}/open-songs")
def jam_open_songs(
    event_id: str,
    jam_id: str,
    user_id: Optional[str] = Query(None, description="Fill my_application for this guest"),
    db: Session = Depends(get_db),
):
    """Open songs of a jam with remaining slots per instrument."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    guest = None
    if user_id is not None:
        try:
            guest = guest_service.resolve_guest(db, event_id, user_id)
        except NotFound:
            logger.debug("User %s is not a guest of event %s, listing anonymously", user_id, event_id)
    return queue_views.jam_open_songs(db, jam, guest)


@router.get("/{event_id}/open-songs")
def event_open_songs(event_id: str, user_id: str = Query(...), db: Session = Depends(get_db)):
    """Open songs across every jam of the event, for a checked-in guest."""
    guest = guest_service.resolve_checked_in_guest(db, event_id, user_id)
    return queue_views.event_open_songs(db, event_id, guest)


@router.get("/{event_id}/my-on-stage")
def my_on_stage_songs(event_id: str, user_id: str = Query(...), db: Session = Depends(get_db)):
    """On-stage songs where the guest holds an approved slot."""
    guest = guest_service.resolve_checked_in_guest(db, event_id, user_id)
    return queue_views.my_on_stage_songs(db, event_id, guest)


@router.get("/{event_id}/jams/{jam_id}/queue-position")
def queue_position(event_id: str, jam_id: str, user_id: str = Query(...), db: Session = Depends(get_db)):
    """Where the guest's approved songs sit among the ready, open songs."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    guest = guest_service.resolve_checked_in_guest(db, event_id, user_id)
    return queue_ordering.queue_position(db, jam, guest)
