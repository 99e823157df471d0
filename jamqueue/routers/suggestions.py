"""Music suggestion routes: guests propose songs with friends, staff approve them into a jam."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from jamqueue.database import get_db
from jamqueue.exceptions import InvalidState
from jamqueue.schemas.guest import GuestOut
from jamqueue.schemas.suggestion import (
    ParticipantOut,
    ParticipantResponse,
    SuggestionApprovalOut,
    SuggestionApprove,
    SuggestionCreate,
    SuggestionInvite,
    SuggestionOut,
    SuggestionSummaryOut,
    SuggestionUpdate,
)
from jamqueue.services import guest_service, jam_service, suggestion_service
from jamqueue.services.broadcaster import JamBroadcaster, get_broadcaster

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{event_id}/suggestions/friends", response_model=list[GuestOut])
def list_friends(
    event_id: str,
    user_id: str = Query(..., description="Acting guest's user id"),
    q: Optional[str] = Query(None, description="Case-insensitive name filter"),
    db: Session = Depends(get_db),
):
    """Checked-in guests of the event who can be invited."""
    guest = guest_service.resolve_checked_in_guest(db, event_id, user_id)
    return suggestion_service.list_friends(db, event_id, guest, q)


@router.get("/{event_id}/suggestions", response_model=list[SuggestionSummaryOut])
def list_suggestions(
    event_id: str,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    """Suggestions the guest created or was invited to."""
    guest = guest_service.resolve_guest(db, event_id, user_id)
    return suggestion_service.list_suggestions(db, event_id, guest)


@router.post("/{event_id}/suggestions", response_model=SuggestionOut, status_code=status.HTTP_201_CREATED)
def create_suggestion(
    event_id: str,
    payload: SuggestionCreate,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    """Suggest a song with the creator's instrument and invited friends."""
    creator = guest_service.resolve_checked_in_guest(db, event_id, user_id)
    invites = [
        (guest_service.resolve_checked_in_guest(db, event_id, invite.user_id), invite.instrument)
        for invite in payload.invites
    ]
    return suggestion_service.create_suggestion(
        db, event_id, creator, payload.title, payload.artist, payload.my_instrument, invites,
    )


@router.put("/{event_id}/suggestions/{suggestion_id}", response_model=SuggestionOut)
def update_suggestion(
    event_id: str,
    suggestion_id: str,
    payload: SuggestionUpdate,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    guest = guest_service.resolve_guest(db, event_id, user_id)
    suggestion = suggestion_service.get_suggestion(db, event_id, suggestion_id)
    return suggestion_service.update_suggestion(db, suggestion, guest, payload.model_dump(exclude_unset=True))


@router.delete("/{event_id}/suggestions/{suggestion_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_suggestion(
    event_id: str,
    suggestion_id: str,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    guest = guest_service.resolve_guest(db, event_id, user_id)
    suggestion = suggestion_service.get_suggestion(db, event_id, suggestion_id)
    suggestion_service.delete_suggestion(db, suggestion, guest)


@router.post("/{event_id}/suggestions/{suggestion_id}/submit", response_model=SuggestionOut)
def submit_suggestion(
    event_id: str,
    suggestion_id: str,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    """Send the suggestion to staff once every invitee has accepted."""
    guest = guest_service.resolve_guest(db, event_id, user_id)
    suggestion = suggestion_service.get_suggestion(db, event_id, suggestion_id)
    return suggestion_service.submit(db, suggestion, guest)


@router.post(
    "/{event_id}/suggestions/{suggestion_id}/participants",
    response_model=ParticipantOut,
    status_code=status.HTTP_201_CREATED,
)
def invite_participant(
    event_id: str,
    suggestion_id: str,
    payload: SuggestionInvite,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    creator = guest_service.resolve_guest(db, event_id, user_id)
    invitee = guest_service.resolve_checked_in_guest(db, event_id, payload.user_id)
    suggestion = suggestion_service.get_suggestion(db, event_id, suggestion_id)
    return suggestion_service.invite(db, suggestion, creator, invitee, payload.instrument)


@router.delete(
    "/{event_id}/suggestions/{suggestion_id}/participants/{target_user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def remove_participant(
    event_id: str,
    suggestion_id: str,
    target_user_id: str,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    creator = guest_service.resolve_guest(db, event_id, user_id)
    target = guest_service.resolve_guest(db, event_id, target_user_id)
    suggestion = suggestion_service.get_suggestion(db, event_id, suggestion_id)
    suggestion_service.remove_participant(db, suggestion, creator, target)


@router.patch("/{event_id}/suggestions/{suggestion_id}/participants/me", response_model=ParticipantOut)
def respond_to_invite(
    event_id: str,
    suggestion_id: str,
    payload: ParticipantResponse,
    user_id: str = Query(..., description="Acting guest's user id"),
    db: Session = Depends(get_db),
):
    """Accept or decline an invitation."""
    guest = guest_service.resolve_guest(db, event_id, user_id)
    suggestion = suggestion_service.get_suggestion(db, event_id, suggestion_id)
    return suggestion_service.respond(db, suggestion, guest, payload.status)


@router.post("/{event_id}/suggestions/{suggestion_id}/approve", response_model=SuggestionApprovalOut)
def approve_suggestion(
    event_id: str,
    suggestion_id: str,
    payload: SuggestionApprove,
    actor_user_id: Optional[str] = Query(None, description="Staff user approving the suggestion"),
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Staff: add the suggestion to a jam (the event's first jam unless ``jam_id`` is given)."""
    suggestion = suggestion_service.get_suggestion(db, event_id, suggestion_id)
    if payload.jam_id:
        jam = jam_service.get_jam(db, event_id, payload.jam_id)
    else:
        jam = jam_service.first_jam(db, event_id)
        if jam is None:
            raise InvalidState("The event has no jam to add the song to")
    return suggestion_service.approve(db, broadcaster, suggestion, jam, approved_by=actor_user_id)
