"""Guest identity provider: resolves (event, user) to a guest and its check-in."""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jamqueue.exceptions import GuestNotCheckedIn, InvalidState, NotFound
from jamqueue.models.guest import Guest

logger = logging.getLogger(__name__)


def register_guest(db: Session, event_id: str, display_name: str, user_id: Optional[str] = None) -> Guest:
    guest = Guest(event_id=event_id, display_name=display_name, user_id=user_id)
    db.add(guest)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvalidState(f"User {user_id} is already a guest of event {event_id}")
    db.refresh(guest)
    logger.info("Registered guest %s (%s) for event %s", guest.guest_id, display_name, event_id)
    return guest


def check_in(db: Session, event_id: str, guest_id: str) -> Guest:
    """Stamp the guest's check-in time; checking in twice keeps the first stamp."""
    guest = get_guest(db, event_id, guest_id)
    if guest.check_in_at is None:
        guest.check_in_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(guest)
        logger.info("Guest %s checked in to event %s", guest_id, event_id)
    return guest


def get_guest(db: Session, event_id: str, guest_id: str) -> Guest:
    guest = db.query(Guest).filter(Guest.guest_id == guest_id, Guest.event_id == event_id).first()
    if not guest:
        raise NotFound("Guest not found for this event")
    return guest


def resolve_guest(db: Session, event_id: str, user_id: str) -> Guest:
    """Return the event's guest record for ``user_id`` or raise ``NotFound``."""
    guest = db.query(Guest).filter(Guest.event_id == event_id, Guest.user_id == user_id).first()
    if not guest:
        raise NotFound("Guest not found for this event")
    return guest


def require_checked_in(guest: Guest) -> Guest:
    if guest.check_in_at is None:
        raise GuestNotCheckedIn("Check-in is required first")
    return guest


def resolve_checked_in_guest(db: Session, event_id: str, user_id: str) -> Guest:
    return require_checked_in(resolve_guest(db, event_id, user_id))
