"""Capacity ledger: per (song, instrument) slot accounting.

The ledger is the single source of truth for "is there room?".  Its only
mutating primitive, ``try_reserve``, approves a pending candidate with one
conditional UPDATE guarded by the approved count, so the number of approved
candidates can never exceed the configured slots:

- an in-process lock per (song, instrument) serializes local threads,
- ``SELECT ... FOR UPDATE`` on the slot row serializes other processes on
  databases with row locks,
- the UPDATE re-counts approvals inside the write statement itself.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, aliased

from jamqueue.exceptions import CapacityExceeded, NotFound
from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.instrument_slot import Instrument, InstrumentSlot
from jamqueue.models.song import Song
from jamqueue.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

slot_locks = KeyedLocks()


def slot_key(song_id: str, instrument) -> tuple[str, str]:
    return (song_id, Instrument(instrument).value)


def get_slot(db: Session, song_id: str, instrument, for_update: bool = False) -> InstrumentSlot:
    query = db.query(InstrumentSlot).filter(
        InstrumentSlot.song_id == song_id,
        InstrumentSlot.instrument == Instrument(instrument),
    )
    if for_update:
        query = query.with_for_update()
    slot = query.first()
    if not slot:
        raise NotFound(f"Instrument '{Instrument(instrument).value}' is not configured for this song")
    return slot


def count_approved(db: Session, song_id: str, instrument) -> int:
    return (
        db.query(func.count(Candidate.candidate_id))
        .filter(
            Candidate.song_id == song_id,
            Candidate.instrument == Instrument(instrument),
            Candidate.status == CandidateStatus.approved,
        )
        .scalar()
    )


def remaining_slots(db: Session, song_id: str, instrument) -> int:
    """Configured slots minus approved candidates, never negative."""
    slot = get_slot(db, song_id, instrument)
    return max(0, slot.slots - count_approved(db, song_id, instrument))


def try_reserve(db: Session, candidate: Candidate, approved_by: str | None) -> Candidate:
    """Approve ``candidate`` if its instrument still has a free slot.

    Commits on success.  Raises ``CapacityExceeded`` when the slot is full and
    ``NotFound`` when the candidate was decided by someone else first; in both
    cases nothing is written.
    """
    song_id = candidate.song_id
    instrument = Instrument(candidate.instrument)

    with slot_locks.hold(slot_key(song_id, instrument)):
        try:
            slot = get_slot(db, song_id, instrument, for_update=True)

            counted = aliased(Candidate)
            approved_count = (
                select(func.count(counted.candidate_id))
                .where(
                    counted.song_id == song_id,
                    counted.instrument == instrument,
                    counted.status == CandidateStatus.approved,
                )
                .scalar_subquery()
            )
            stmt = (
                update(Candidate)
                .where(
                    Candidate.candidate_id == candidate.candidate_id,
                    Candidate.status == CandidateStatus.pending,
                    approved_count < slot.slots,
                )
                .values(
                    status=CandidateStatus.approved,
                    approved_at=datetime.now(timezone.utc),
                    approved_by=approved_by,
                )
                .execution_options(synchronize_session=False)
            )
            result = db.execute(stmt)
            if result.rowcount != 1:
                db.rollback()
                db.refresh(candidate)
                if candidate.status != CandidateStatus.pending:
                    raise NotFound(f"Candidate is already {candidate.status.value}")
                raise CapacityExceeded(
                    f"All {slot.slots} '{instrument.value}' slot(s) on this song are taken"
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(candidate)
    logger.info(
        "Reserved '%s' slot on song %s for candidate %s (approved by %s)",
        instrument.value, song_id, candidate.candidate_id, approved_by,
    )
    return candidate


def instrument_capacity(song: Song) -> list[dict[str, Any]]:
    """Per-instrument capacity view built from an already-loaded song."""
    rows = []
    for slot in song.instrument_slots:
        same_instrument = [c for c in song.candidates if c.instrument == slot.instrument]
        approved = sum(1 for c in same_instrument if c.status == CandidateStatus.approved)
        pending = sum(1 for c in same_instrument if c.status == CandidateStatus.pending)
        rows.append({
            "instrument": slot.instrument.value,
            "slots": slot.slots,
            "required": slot.required,
            "fallback_allowed": slot.fallback_allowed,
            "approved_count": approved,
            "pending_count": pending,
            "remaining_slots": max(0, slot.slots - approved),
        })
    return rows
