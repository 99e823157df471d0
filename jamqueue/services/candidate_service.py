"""Candidate workflow: apply, approve, reject.

State machine: pending -> approved (guarded by the capacity ledger) or
pending -> rejected.  Approved and rejected are terminal.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jamqueue.exceptions import DuplicateApplication, InvalidState, NotFound, SongNotOpen
from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.guest import Guest
from jamqueue.models.instrument_slot import Instrument
from jamqueue.models.jam import Jam
from jamqueue.models.song import Song, SongStatus
from jamqueue.services import broadcaster as events
from jamqueue.services import capacity_ledger
from jamqueue.services.broadcaster import JamBroadcaster, publish_for_jam
from jamqueue.services.guest_service import require_checked_in

logger = logging.getLogger(__name__)


def _candidate_payload(candidate: Candidate) -> dict:
    return {
        "song_id": candidate.song_id,
        "candidate_id": candidate.candidate_id,
        "instrument": Instrument(candidate.instrument).value,
        "guest_id": candidate.guest_id,
    }


def get_candidate(db: Session, song: Song, candidate_id: str) -> Candidate:
    candidate = (
        db.query(Candidate)
        .filter(Candidate.candidate_id == candidate_id, Candidate.song_id == song.song_id)
        .first()
    )
    if not candidate:
        raise NotFound("Candidate not found")
    return candidate


def apply(
    db: Session,
    broadcaster: JamBroadcaster,
    jam: Jam,
    song: Song,
    instrument: str,
    guest: Guest,
) -> Candidate:
    """Create a pending application of ``guest`` for ``instrument`` on ``song``."""
    if song.status != SongStatus.open_for_candidates:
        raise SongNotOpen("Song is not open for candidates")
    if guest.event_id != jam.event_id:
        raise NotFound("Guest not found for this event")
    require_checked_in(guest)

    instrument = Instrument(instrument)
    capacity_ledger.get_slot(db, song.song_id, instrument)

    exists = (
        db.query(Candidate)
        .filter(
            Candidate.song_id == song.song_id,
            Candidate.instrument == instrument,
            Candidate.guest_id == guest.guest_id,
        )
        .first()
    )
    if exists:
        raise DuplicateApplication("Already applied for this instrument on this song")

    candidate = Candidate(
        song_id=song.song_id,
        instrument=instrument,
        guest_id=guest.guest_id,
        status=CandidateStatus.pending,
    )
    db.add(candidate)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with an identical application
        db.rollback()
        raise DuplicateApplication("Already applied for this instrument on this song")
    db.refresh(candidate)
    logger.info(
        "Guest %s applied for %s on song %s (candidate %s)",
        guest.guest_id, instrument.value, song.song_id, candidate.candidate_id,
    )
    publish_for_jam(broadcaster, jam, events.CANDIDATE_APPLIED, _candidate_payload(candidate))
    return candidate


def approve(
    db: Session,
    broadcaster: JamBroadcaster,
    jam: Jam,
    candidate: Candidate,
    approved_by: Optional[str] = None,
) -> Candidate:
    """Approve a pending candidate if a slot is free for its instrument."""
    if candidate.status != CandidateStatus.pending:
        raise NotFound(f"Candidate is already {candidate.status.value}")
    capacity_ledger.try_reserve(db, candidate, approved_by)
    publish_for_jam(broadcaster, jam, events.CANDIDATE_APPROVED, _candidate_payload(candidate))
    return candidate


def _check_rejectable(candidate: Candidate) -> bool:
    """False when already rejected; raises for approved candidates."""
    if candidate.status == CandidateStatus.approved:
        raise InvalidState("Approved candidates cannot be rejected")
    return candidate.status != CandidateStatus.rejected


def reject(db: Session, broadcaster: JamBroadcaster, jam: Jam, candidate: Candidate) -> Candidate:
    """Reject a pending candidate; rejecting twice is a no-op.

    The write only matches a still-pending row, taken under the same slot
    lock as approvals, so a candidate approved meanwhile is never flipped.
    """
    if not _check_rejectable(candidate):
        return candidate

    key = capacity_ledger.slot_key(candidate.song_id, candidate.instrument)
    with capacity_ledger.slot_locks.hold(key):
        try:
            result = db.execute(
                update(Candidate)
                .where(
                    Candidate.candidate_id == candidate.candidate_id,
                    Candidate.status == CandidateStatus.pending,
                )
                .values(status=CandidateStatus.rejected)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                db.refresh(candidate)
                if not _check_rejectable(candidate):
                    return candidate
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(candidate)
    logger.info("Rejected candidate %s on song %s", candidate.candidate_id, candidate.song_id)
    publish_for_jam(broadcaster, jam, events.CANDIDATE_REJECTED, _candidate_payload(candidate))
    return candidate


def bulk_reject_undecided(db: Session, songs: list[Song]) -> list[Candidate]:
    """Reject every pending candidate of ``songs``.

    Takes the slot locks of the affected instruments, so call it before the
    surrounding transaction writes anything else.  Does not commit; the caller
    commits with the rest of its change and then publishes one
    ``candidate_rejected`` per returned candidate.
    """
    song_ids = [song.song_id for song in songs]
    pending = (
        db.query(Candidate.song_id, Candidate.instrument)
        .filter(Candidate.song_id.in_(song_ids), Candidate.status == CandidateStatus.pending)
        .distinct()
        .all()
    )
    if not pending:
        return []

    keys = [capacity_ledger.slot_key(song_id, instrument) for song_id, instrument in pending]
    with capacity_ledger.slot_locks.hold_many(keys):
        undecided = (
            db.query(Candidate)
            .filter(Candidate.song_id.in_(song_ids), Candidate.status == CandidateStatus.pending)
            .with_for_update()
            .populate_existing()
            .all()
        )
        if undecided:
            db.execute(
                update(Candidate)
                .where(
                    Candidate.candidate_id.in_([c.candidate_id for c in undecided]),
                    Candidate.status == CandidateStatus.pending,
                )
                .values(status=CandidateStatus.rejected)
                .execution_options(synchronize_session="fetch")
            )
    return undecided


def publish_rejections(broadcaster: JamBroadcaster, jam: Jam, rejected: list[Candidate]) -> None:
    for candidate in rejected:
        publish_for_jam(broadcaster, jam, events.CANDIDATE_REJECTED, _candidate_payload(candidate))
