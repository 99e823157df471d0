"""Candidate routes: guests apply for instrument slots, staff approve or reject."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from jamqueue.database import get_db
from jamqueue.schemas.candidate import CandidateApply, CandidateOut
from jamqueue.services import candidate_service, guest_service, jam_service
from jamqueue.services.broadcaster import JamBroadcaster, get_broadcaster

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/{event_id}/jams/{jam_id}/songs/{song_id}/candidates",
    response_model=CandidateOut,
    status_code=status.HTTP_201_CREATED,
)
def apply_for_slot(
    event_id: str,
    jam_id: str,
    song_id: str,
    payload: CandidateApply,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Apply as a checked-in guest for one instrument on an open song."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    guest = guest_service.resolve_guest(db, event_id, payload.user_id)
    return candidate_service.apply(db, broadcaster, jam, song, payload.instrument, guest)


@router.post(
    "/{event_id}/jams/{jam_id}/songs/{song_id}/candidates/{candidate_id}/approve",
    response_model=CandidateOut,
)
def approve_candidate(
    event_id: str,
    jam_id: str,
    song_id: str,
    candidate_id: str,
    actor_user_id: Optional[str] = Query(None, description="Staff user approving the candidate"),
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Approve a pending candidate if its instrument still has a free slot."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    candidate = candidate_service.get_candidate(db, song, candidate_id)
    return candidate_service.approve(db, broadcaster, jam, candidate, approved_by=actor_user_id)


@router.post(
    "/{event_id}/jams/{jam_id}/songs/{song_id}/candidates/{candidate_id}/reject",
    response_model=CandidateOut,
)
def reject_candidate(
    event_id: str,
    jam_id: str,
    song_id: str,
    candidate_id: str,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Reject a pending candidate."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    candidate = candidate_service.get_candidate(db, song, candidate_id)
    return candidate_service.reject(db, broadcaster, jam, candidate)
