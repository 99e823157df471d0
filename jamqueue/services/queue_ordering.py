"""Queue ordering: dense ``order_index`` per (jam, status bucket).

Every bucket holds indices 0..n-1 with no gaps or duplicates.  Songs entering
a bucket are appended at the end; the bucket they left is re-packed.

Writers of a jam's songs go through ``jam_writer``, which serializes them per
jam (in-process lock plus a row lock on the jam), so ``max + 1`` appends and
bucket rewrites never interleave.
"""
import logging
from contextlib import contextmanager
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from jamqueue.exceptions import OutOfBucket
from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.guest import Guest
from jamqueue.models.jam import Jam
from jamqueue.models.song import Song, SongStatus
from jamqueue.services import broadcaster as events
from jamqueue.services.broadcaster import JamBroadcaster, publish_for_jam
from jamqueue.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

jam_locks = KeyedLocks()


@contextmanager
def jam_writer(db: Session, jam: Jam):
    """Hold the write lock of ``jam``; rolls back if the body raises.

    Not reentrant.  Commit inside the block so the next writer sees the change.
    """
    with jam_locks.hold(jam.jam_id):
        try:
            db.query(Jam).filter(Jam.jam_id == jam.jam_id).with_for_update().first()
            yield
        except Exception:
            db.rollback()
            raise


def bucket(db: Session, jam_id: str, status: SongStatus) -> list[Song]:
    """Songs of one bucket in queue order."""
    db.flush()
    return (
        db.query(Song)
        .filter(Song.jam_id == jam_id, Song.status == status)
        .order_by(Song.order_index, Song.created_at, Song.song_id)
        .populate_existing()
        .all()
    )


def next_index(db: Session, jam_id: str, status: SongStatus) -> int:
    """Index for appending to a bucket: max + 1, or 0 when empty."""
    db.flush()
    current = (
        db.query(func.max(Song.order_index))
        .filter(Song.jam_id == jam_id, Song.status == status)
        .scalar()
    )
    return 0 if current is None else current + 1


def compact(db: Session, jam_id: str, status: SongStatus) -> list[str]:
    """Re-pack a bucket to 0..n-1 keeping its order. Does not commit."""
    songs = bucket(db, jam_id, status)
    for idx, song in enumerate(songs):
        if song.order_index != idx:
            song.order_index = idx
    db.flush()
    return [s.song_id for s in songs]


def move_to_bucket(db: Session, song: Song, status: SongStatus) -> SongStatus:
    """Move ``song`` to the end of another bucket and re-pack the one it left.

    Returns the previous status.  Does not commit.
    """
    previous = SongStatus(song.status)
    song.order_index = next_index(db, song.jam_id, status)
    song.status = status
    db.flush()
    compact(db, song.jam_id, previous)
    return previous


def reorder(
    db: Session,
    broadcaster: JamBroadcaster,
    jam: Jam,
    status: str,
    ordered_ids: list[str],
) -> list[str]:
    """Reorder one bucket.

    Mentioned songs take indices 0..k-1 in the given order; songs not mentioned
    follow in their previous relative order, so the bucket never loses members.
    """
    status = SongStatus(status)
    with jam_writer(db, jam):
        songs = bucket(db, jam.jam_id, status)
        by_id = {s.song_id: s for s in songs}

        requested: list[str] = []
        for song_id in ordered_ids:
            if song_id not in by_id:
                raise OutOfBucket(f"Song {song_id} is not in the '{status.value}' bucket of this jam")
            if song_id not in requested:
                requested.append(song_id)

        mentioned = set(requested)
        final = requested + [s.song_id for s in songs if s.song_id not in mentioned]
        for idx, song_id in enumerate(final):
            by_id[song_id].order_index = idx
        db.commit()

    logger.info("Reordered '%s' bucket of jam %s (%d songs)", status.value, jam.jam_id, len(final))
    publish_for_jam(broadcaster, jam, events.SONG_ORDER_CHANGED, {"status": status.value, "ordered_ids": final})
    return final


def queue_position(db: Session, jam: Jam, guest: Guest) -> dict[str, Any]:
    """Where the guest's approved songs sit among the ready, open songs of a jam.

    Positions are 1-based; ``total`` is the number of ready, open songs.
    """
    queue = (
        db.query(Song)
        .filter(
            Song.jam_id == jam.jam_id,
            Song.status == SongStatus.open_for_candidates,
            Song.ready.is_(True),
        )
        .order_by(Song.order_index, Song.created_at, Song.song_id)
        .all()
    )
    position_of = {song.song_id: idx + 1 for idx, song in enumerate(queue)}

    approved = []
    if position_of:
        approved = (
            db.query(Candidate)
            .filter(
                Candidate.guest_id == guest.guest_id,
                Candidate.status == CandidateStatus.approved,
                Candidate.song_id.in_(list(position_of)),
            )
            .all()
        )

    positions = sorted(
        (
            {"song_id": c.song_id, "instrument": c.instrument.value, "position": position_of[c.song_id]}
            for c in approved
        ),
        key=lambda p: p["position"],
    )
    return {"positions": positions, "total": len(queue)}
