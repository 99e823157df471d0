"""Guest registration and check-in routes."""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from jamqueue.database import get_db
from jamqueue.schemas.guest import GuestCreate, GuestOut
from jamqueue.services import guest_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{event_id}/guests", response_model=GuestOut, status_code=status.HTTP_201_CREATED)
def register_guest(event_id: str, payload: GuestCreate, db: Session = Depends(get_db)):
    """Register a guest for an event; one guest per (event, user)."""
    return guest_service.register_guest(db, event_id, payload.display_name, payload.user_id)


@router.post("/{event_id}/guests/{guest_id}/check-in", response_model=GuestOut)
def check_in_guest(event_id: str, guest_id: str, db: Session = Depends(get_db)):
    """Record the guest's arrival at the venue."""
    return guest_service.check_in(db, event_id, guest_id)
