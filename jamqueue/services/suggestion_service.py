"""Music suggestions: guests propose a song with an invited line-up, staff turn it into a jam song.

Lifecycle: draft -> submitted -> approved.  The creator is an accepted
participant from the start; every invitee must accept before the creator can
submit.  Approval creates a planned song whose slots match the accepted
line-up and approves each participant through the capacity ledger.
"""
import logging
from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, InvalidRequestError
from sqlalchemy.orm import Session, selectinload

from jamqueue.exceptions import Forbidden, InvalidState, NotFound, ParticipantsPending
from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.guest import Guest
from jamqueue.models.instrument_slot import Instrument
from jamqueue.models.jam import Jam
from jamqueue.models.suggestion import ParticipantStatus, Suggestion, SuggestionParticipant, SuggestionStatus
from jamqueue.services import candidate_service, song_service
from jamqueue.services.broadcaster import JamBroadcaster
from jamqueue.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

suggestion_locks = KeyedLocks()


def _participant_view(participant: SuggestionParticipant) -> dict[str, Any]:
    return {
        "participant_id": participant.participant_id,
        "guest_id": participant.guest_id,
        "instrument": Instrument(participant.instrument).value,
        "is_creator": participant.is_creator,
        "status": ParticipantStatus(participant.status).value,
    }


def _reload(db: Session, suggestion: Suggestion) -> Suggestion:
    try:
        db.refresh(suggestion, with_for_update=True)
    except InvalidRequestError:
        raise NotFound("Suggestion not found")
    return suggestion


def _require_creator(suggestion: Suggestion, guest: Guest) -> None:
    if suggestion.created_by_guest_id != guest.guest_id:
        raise Forbidden("Only the creator can change this suggestion")


def _require_draft(suggestion: Suggestion) -> None:
    if suggestion.status != SuggestionStatus.draft:
        raise InvalidState(f"Suggestion is {SuggestionStatus(suggestion.status).value}, not a draft")


def get_suggestion(db: Session, event_id: str, suggestion_id: str) -> Suggestion:
    suggestion = (
        db.query(Suggestion)
        .filter(Suggestion.suggestion_id == suggestion_id, Suggestion.event_id == event_id)
        .first()
    )
    if not suggestion:
        raise NotFound("Suggestion not found")
    return suggestion


def list_friends(db: Session, event_id: str, guest: Guest, q: Optional[str] = None) -> list[Guest]:
    """Checked-in guests of the event other than ``guest``, optionally filtered by name."""
    query = db.query(Guest).filter(
        Guest.event_id == event_id,
        Guest.guest_id != guest.guest_id,
        Guest.check_in_at.isnot(None),
    )
    if q:
        query = query.filter(Guest.display_name.ilike(f"%{q}%"))
    return query.order_by(Guest.display_name).all()


def list_suggestions(db: Session, event_id: str, guest: Guest) -> list[dict[str, Any]]:
    """Suggestions the guest created or was invited to, newest first, with counts for the card view."""
    suggestions = (
        db.query(Suggestion)
        .options(selectinload(Suggestion.participants))
        .filter(
            Suggestion.event_id == event_id,
            or_(
                Suggestion.created_by_guest_id == guest.guest_id,
                Suggestion.participants.any(SuggestionParticipant.guest_id == guest.guest_id),
            ),
        )
        .order_by(Suggestion.created_at.desc())
        .all()
    )

    views = []
    for suggestion in suggestions:
        participants = suggestion.participants
        counts = {status: 0 for status in ParticipantStatus}
        for participant in participants:
            counts[ParticipantStatus(participant.status)] += 1
        mine = next((p for p in participants if p.guest_id == guest.guest_id), None)
        is_creator = suggestion.created_by_guest_id == guest.guest_id
        views.append({
            "suggestion_id": suggestion.suggestion_id,
            "event_id": suggestion.event_id,
            "title": suggestion.title,
            "artist": suggestion.artist,
            "created_by_guest_id": suggestion.created_by_guest_id,
            "status": SuggestionStatus(suggestion.status).value,
            "song_id": suggestion.song_id,
            "created_at": suggestion.created_at,
            "participants": [_participant_view(p) for p in participants],
            "stats": {
                "total": len(participants),
                "accepted": counts[ParticipantStatus.accepted],
                "pending": counts[ParticipantStatus.pending],
                "rejected": counts[ParticipantStatus.rejected],
            },
            "user_context": {
                "is_creator": is_creator,
                "my_status": ParticipantStatus(mine.status).value if mine else None,
                "can_submit": (
                    is_creator
                    and suggestion.status == SuggestionStatus.draft
                    and counts[ParticipantStatus.pending] == 0
                    and counts[ParticipantStatus.rejected] == 0
                ),
            },
        })
    return views


def create_suggestion(
    db: Session,
    event_id: str,
    creator: Guest,
    title: str,
    artist: str,
    my_instrument: str,
    invites: Optional[list[tuple[Guest, str]]] = None,
) -> Suggestion:
    """Create a draft with the creator as an accepted participant and the invitees pending."""
    invites = invites or []
    invited_ids = [guest.guest_id for guest, _ in invites]
    if creator.guest_id in invited_ids or len(set(invited_ids)) != len(invited_ids):
        raise InvalidState("Each guest can join a suggestion only once")

    suggestion = Suggestion(
        event_id=event_id,
        title=title,
        artist=artist,
        created_by_guest_id=creator.guest_id,
        status=SuggestionStatus.draft,
    )
    suggestion.participants.append(SuggestionParticipant(
        guest_id=creator.guest_id,
        instrument=Instrument(my_instrument),
        is_creator=True,
        status=ParticipantStatus.accepted,
    ))
    for guest, instrument in invites:
        suggestion.participants.append(SuggestionParticipant(
            guest_id=guest.guest_id,
            instrument=Instrument(instrument),
            is_creator=False,
            status=ParticipantStatus.pending,
        ))
    db.add(suggestion)
    db.commit()
    db.refresh(suggestion)
    logger.info(
        "Guest %s suggested '%s' by %s (%s) with %d invite(s)",
        creator.guest_id, title, artist, suggestion.suggestion_id, len(invites),
    )
    return suggestion


def update_suggestion(db: Session, suggestion: Suggestion, guest: Guest, fields: dict[str, Any]) -> Suggestion:
    _require_creator(suggestion, guest)
    with suggestion_locks.hold(suggestion.suggestion_id):
        try:
            _reload(db, suggestion)
            _require_draft(suggestion)
            for field in ("title", "artist"):
                if fields.get(field) is not None:
                    setattr(suggestion, field, fields[field])
            db.commit()
        except Exception:
            db.rollback()
            raise
    db.refresh(suggestion)
    return suggestion


def delete_suggestion(db: Session, suggestion: Suggestion, guest: Guest) -> None:
    _require_creator(suggestion, guest)
    suggestion_id = suggestion.suggestion_id
    with suggestion_locks.hold(suggestion_id):
        db.delete(suggestion)
        db.commit()
    logger.info("Deleted suggestion %s", suggestion_id)


def invite(db: Session, suggestion: Suggestion, creator: Guest, invitee: Guest, instrument: str) -> SuggestionParticipant:
    """Add a pending participant to a draft."""
    _require_creator(suggestion, creator)
    if invitee.event_id != suggestion.event_id:
        raise NotFound("Guest not found for this event")
    with suggestion_locks.hold(suggestion.suggestion_id):
        try:
            _reload(db, suggestion)
            _require_draft(suggestion)
            if any(p.guest_id == invitee.guest_id for p in suggestion.participants):
                raise InvalidState("Guest is already on this suggestion")
            participant = SuggestionParticipant(
                guest_id=invitee.guest_id,
                instrument=Instrument(instrument),
                is_creator=False,
                status=ParticipantStatus.pending,
            )
            suggestion.participants.append(participant)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise InvalidState("Guest is already on this suggestion")
        except Exception:
            db.rollback()
            raise
    db.refresh(participant)
    logger.info("Invited guest %s to suggestion %s on %s", invitee.guest_id, suggestion.suggestion_id, instrument)
    return participant


def remove_participant(db: Session, suggestion: Suggestion, creator: Guest, target: Guest) -> None:
    """Drop an invitee from a draft; the creator cannot be removed."""
    _require_creator(suggestion, creator)
    with suggestion_locks.hold(suggestion.suggestion_id):
        try:
            _reload(db, suggestion)
            _require_draft(suggestion)
            participant = next(
                (p for p in suggestion.participants if p.guest_id == target.guest_id and not p.is_creator),
                None,
            )
            if participant is None:
                raise NotFound("Participant not found on this suggestion")
            suggestion.participants.remove(participant)
            db.commit()
        except Exception:
            db.rollback()
            raise
    logger.info("Removed guest %s from suggestion %s", target.guest_id, suggestion.suggestion_id)


def respond(db: Session, suggestion: Suggestion, guest: Guest, status: str) -> SuggestionParticipant:
    """An invitee accepts or declines while the suggestion is still a draft."""
    answer = ParticipantStatus(status)
    if answer == ParticipantStatus.pending:
        raise InvalidState("An invitation can only be accepted or rejected")
    with suggestion_locks.hold(suggestion.suggestion_id):
        try:
            _reload(db, suggestion)
            _require_draft(suggestion)
            participant = next((p for p in suggestion.participants if p.guest_id == guest.guest_id), None)
            if participant is None:
                raise Forbidden("You are not a participant of this suggestion")
            if participant.is_creator:
                raise InvalidState("The creator's own participation is always accepted")
            participant.status = answer
            db.commit()
        except Exception:
            db.rollback()
            raise
    db.refresh(participant)
    logger.info("Guest %s %s suggestion %s", guest.guest_id, answer.value, suggestion.suggestion_id)
    return participant


def submit(db: Session, suggestion: Suggestion, guest: Guest) -> Suggestion:
    """Send a draft to staff once every invitee has accepted."""
    _require_creator(suggestion, guest)
    with suggestion_locks.hold(suggestion.suggestion_id):
        try:
            _reload(db, suggestion)
            _require_draft(suggestion)
            waiting = [
                p.participant_id for p in suggestion.participants
                if not p.is_creator and p.status != ParticipantStatus.accepted
            ]
            if waiting:
                raise ParticipantsPending(
                    f"All invitees must accept before submitting ({len(waiting)} still pending or declined)"
                )
            suggestion.status = SuggestionStatus.submitted
            db.commit()
        except Exception:
            db.rollback()
            raise
    db.refresh(suggestion)
    logger.info("Suggestion %s submitted for approval", suggestion.suggestion_id)
    return suggestion


def approve(
    db: Session,
    broadcaster: JamBroadcaster,
    suggestion: Suggestion,
    jam: Jam,
    approved_by: Optional[str] = None,
) -> dict[str, Any]:
    """Turn a submitted suggestion into a planned song of ``jam`` with its line-up approved.

    The suggestion is claimed first, so two staff approving at once create one song.
    """
    if jam.event_id != suggestion.event_id:
        raise NotFound("Jam not found for this event")

    with suggestion_locks.hold(suggestion.suggestion_id):
        try:
            _reload(db, suggestion)
            if suggestion.status != SuggestionStatus.submitted:
                raise InvalidState("Only submitted suggestions can be approved")
            suggestion.status = SuggestionStatus.approved
            db.commit()
        except Exception:
            db.rollback()
            raise

    lineup = [p for p in suggestion.participants if p.status == ParticipantStatus.accepted]
    slots_by_instrument: dict[Instrument, int] = {}
    for participant in lineup:
        instrument = Instrument(participant.instrument)
        slots_by_instrument[instrument] = slots_by_instrument.get(instrument, 0) + 1
    manifest = [{"instrument": instrument, "slots": count} for instrument, count in slots_by_instrument.items()]

    song = song_service.create_song(
        db, broadcaster, jam, {"title": suggestion.title, "artist": suggestion.artist}, manifest,
    )
    candidates = [
        Candidate(
            song_id=song.song_id,
            instrument=Instrument(participant.instrument),
            guest_id=participant.guest_id,
            status=CandidateStatus.pending,
        )
        for participant in lineup
    ]
    db.add_all(candidates)
    suggestion.song_id = song.song_id
    db.commit()

    for candidate in candidates:
        candidate_service.approve(db, broadcaster, jam, candidate, approved_by=approved_by)

    logger.info(
        "Approved suggestion %s into song %s of jam %s (%d musician(s))",
        suggestion.suggestion_id, song.song_id, jam.jam_id, len(candidates),
    )
    return {
        "suggestion_id": suggestion.suggestion_id,
        "jam_id": jam.jam_id,
        "song_id": song.song_id,
        "approved_candidate_ids": [c.candidate_id for c in candidates],
    }
