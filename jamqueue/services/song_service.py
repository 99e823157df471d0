"""Song state machine: lifecycle, ready gate, batch open/close, manifests.

Transitions:

    planned             -> open_for_candidates, canceled
    open_for_candidates -> planned (close), on_stage*, played*, canceled
    on_stage            -> played, canceled
    played              -> canceled
    canceled            -> (terminal)

``*`` needs ``ready``.  Leaving open_for_candidates always clears ``ready``;
closing also rejects undecided candidates.  ``ready`` is a curator's decision
and is never derived from lineup completeness.
"""
import logging
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm import Session

from jamqueue.config import settings
from jamqueue.exceptions import CapacityExceeded, InvalidState, NotFound, NotReady, TooManyOpenSongs
from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.instrument_slot import Instrument, InstrumentSlot
from jamqueue.models.jam import Jam
from jamqueue.models.song import Song, SongStatus
from jamqueue.services import broadcaster as events
from jamqueue.services import candidate_service, capacity_ledger, queue_ordering
from jamqueue.services.broadcaster import JamBroadcaster, publish_for_jam

logger = logging.getLogger(__name__)

TRANSITIONS: dict[SongStatus, set[SongStatus]] = {
    SongStatus.planned: {SongStatus.open_for_candidates, SongStatus.canceled},
    SongStatus.open_for_candidates: {
        SongStatus.planned,
        SongStatus.on_stage,
        SongStatus.played,
        SongStatus.canceled,
    },
    SongStatus.on_stage: {SongStatus.played, SongStatus.canceled},
    SongStatus.played: {SongStatus.canceled},
    SongStatus.canceled: set(),
}

READY_GATED = {SongStatus.on_stage, SongStatus.played}

SONG_FIELDS = ("title", "artist", "key", "tempo_bpm", "notes", "release_batch")


def _slot_rows(manifest: list[dict[str, Any]]) -> list[InstrumentSlot]:
    return [
        InstrumentSlot(
            instrument=Instrument(item["instrument"]),
            slots=item.get("slots") or 1,
            required=item.get("required", True),
            fallback_allowed=item.get("fallback_allowed", True),
        )
        for item in manifest
    ]


def _reload(db: Session, song: Song) -> Song:
    """Re-read ``song`` under a row lock; the caller holds ``jam_writer``."""
    try:
        db.refresh(song, with_for_update=True)
    except InvalidRequestError:
        raise NotFound("Song not found")
    return song


def create_song(
    db: Session,
    broadcaster: JamBroadcaster,
    jam: Jam,
    fields: dict[str, Any],
    instrument_slots: Optional[list[dict[str, Any]]] = None,
) -> Song:
    """Create a planned song at the end of the planned bucket, with an optional slot manifest."""
    with queue_ordering.jam_writer(db, jam):
        song = Song(jam_id=jam.jam_id, status=SongStatus.planned, ready=False)
        for field in SONG_FIELDS:
            if field in fields:
                setattr(song, field, fields[field])
        song.order_index = queue_ordering.next_index(db, jam.jam_id, SongStatus.planned)
        song.instrument_slots = _slot_rows(instrument_slots or [])
        db.add(song)
        db.commit()
    db.refresh(song)
    logger.info("Created song '%s' (%s) in jam %s", song.title, song.song_id, jam.jam_id)

    if instrument_slots:
        publish_for_jam(broadcaster, jam, events.INSTRUMENT_SLOTS_UPDATED, {"song_id": song.song_id})
    publish_for_jam(broadcaster, jam, events.SONG_CREATED, {"song_id": song.song_id})
    return song


def replace_instrument_slots(
    db: Session,
    broadcaster: JamBroadcaster,
    jam: Jam,
    song: Song,
    manifest: list[dict[str, Any]],
) -> list[InstrumentSlot]:
    """Replace the whole slot manifest of a song.

    Refuses any manifest that would leave an instrument with fewer slots than
    it already has approved candidates.
    """
    new_rows = _slot_rows(manifest)
    keys = {capacity_ledger.slot_key(song.song_id, s.instrument) for s in song.instrument_slots}
    keys |= {capacity_ledger.slot_key(song.song_id, row.instrument) for row in new_rows}

    with capacity_ledger.slot_locks.hold_many(keys):
        try:
            (
                db.query(InstrumentSlot)
                .filter(InstrumentSlot.song_id == song.song_id)
                .with_for_update()
                .all()
            )
            new_capacity = {row.instrument: row.slots for row in new_rows}
            approved_by_instrument = (
                db.query(Candidate.instrument, func.count(Candidate.candidate_id))
                .filter(Candidate.song_id == song.song_id, Candidate.status == CandidateStatus.approved)
                .group_by(Candidate.instrument)
                .all()
            )
            for instrument, approved in approved_by_instrument:
                instrument = Instrument(instrument)
                if new_capacity.get(instrument, 0) < approved:
                    raise CapacityExceeded(
                        f"'{instrument.value}' already has {approved} approved candidate(s)"
                    )

            song.instrument_slots.clear()
            db.flush()
            song.instrument_slots.extend(new_rows)
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(song)
    logger.info("Replaced instrument manifest of song %s (%d instruments)", song.song_id, len(new_rows))
    publish_for_jam(broadcaster, jam, events.INSTRUMENT_SLOTS_UPDATED, {"song_id": song.song_id})
    return list(song.instrument_slots)


def _load_songs(db: Session, jam: Jam, song_ids: list[str]) -> list[Song]:
    """Load songs of ``jam`` in the requested order, de-duplicated, fresh from the database."""
    unique_ids = list(dict.fromkeys(song_ids))
    songs = (
        db.query(Song)
        .filter(Song.jam_id == jam.jam_id, Song.song_id.in_(unique_ids))
        .with_for_update()
        .populate_existing()
        .all()
    )
    by_id = {s.song_id: s for s in songs}
    missing = [sid for sid in unique_ids if sid not in by_id]
    if missing:
        raise NotFound(f"Songs not found in this jam: {', '.join(missing)}")
    return [by_id[sid] for sid in unique_ids]


def count_open(db: Session, jam: Jam) -> int:
    return (
        db.query(Song)
        .filter(Song.jam_id == jam.jam_id, Song.status == SongStatus.open_for_candidates)
        .count()
    )


def _open_songs(db: Session, jam: Jam, songs: list[Song]) -> None:
    """Ceiling check and planned -> open_for_candidates for a whole batch. Does not commit."""
    for song in songs:
        if song.status != SongStatus.planned:
            raise InvalidState(f"Song {song.song_id} is {song.status.value}, only planned songs can be opened")

    ceiling = settings.JAM_MAX_OPEN_SONGS
    current = count_open(db, jam)
    if current + len(songs) > ceiling:
        raise TooManyOpenSongs(
            f"Opening {len(songs)} song(s) would exceed the limit of {ceiling} open songs ({current} open)"
        )

    for song in songs:
        song.ready = False
        queue_ordering.move_to_bucket(db, song, SongStatus.open_for_candidates)


def open_songs(db: Session, broadcaster: JamBroadcaster, jam: Jam, song_ids: list[str]) -> list[Song]:
    """Open a batch of planned songs for candidates, all or nothing."""
    with queue_ordering.jam_writer(db, jam):
        songs = _load_songs(db, jam, song_ids)
        _open_songs(db, jam, songs)
        db.commit()

    opened = [s.song_id for s in songs]
    logger.info("Opened %d song(s) in jam %s: %s", len(opened), jam.jam_id, opened)
    publish_for_jam(broadcaster, jam, events.SONGS_OPENED, {"song_ids": opened})
    return songs


def _close_songs(db: Session, songs: list[Song]) -> list[Candidate]:
    """open_for_candidates -> planned for a batch. Does not commit.

    Rejection runs first: it waits on slot locks and must not hold written rows meanwhile.
    """
    rejected = candidate_service.bulk_reject_undecided(db, songs)
    for song in songs:
        song.ready = False
        queue_ordering.move_to_bucket(db, song, SongStatus.planned)
    return rejected


def close_songs(db: Session, broadcaster: JamBroadcaster, jam: Jam, song_ids: list[str]) -> list[Song]:
    """Send open songs back to planned, clearing ready and rejecting undecided candidates."""
    with queue_ordering.jam_writer(db, jam):
        songs = _load_songs(db, jam, song_ids)
        for song in songs:
            if song.status != SongStatus.open_for_candidates:
                raise InvalidState(f"Song {song.song_id} is not open for candidates")
        rejected = _close_songs(db, songs)
        db.commit()

    closed = [s.song_id for s in songs]
    logger.info("Closed %d song(s) in jam %s, rejected %d candidate(s)", len(closed), jam.jam_id, len(rejected))
    candidate_service.publish_rejections(broadcaster, jam, rejected)
    publish_for_jam(broadcaster, jam, events.SONGS_CLOSED, {"song_ids": closed})
    return songs


def move_song(db: Session, broadcaster: JamBroadcaster, jam: Jam, song: Song, status: str) -> Song:
    """Move a song to ``status`` following the transition table."""
    target = SongStatus(status)
    rejected = []
    with queue_ordering.jam_writer(db, jam):
        _reload(db, song)
        current = SongStatus(song.status)
        if target not in TRANSITIONS[current]:
            raise InvalidState(f"Cannot move a song from {current.value} to {target.value}")
        if current == SongStatus.open_for_candidates and target in READY_GATED and not song.ready:
            raise NotReady("Song must be marked ready before it can go on stage or be played")

        if target == SongStatus.open_for_candidates:
            _open_songs(db, jam, [song])
        elif target == SongStatus.planned:
            rejected = _close_songs(db, [song])
        else:
            song.ready = False
            queue_ordering.move_to_bucket(db, song, target)
        db.commit()

    db.refresh(song)
    logger.info("Moved song %s from %s to %s", song.song_id, current.value, target.value)
    candidate_service.publish_rejections(broadcaster, jam, rejected)
    publish_for_jam(
        broadcaster, jam, events.SONG_STATUS_CHANGED, {"song_id": song.song_id, "status": target.value}
    )
    return song


def set_ready(db: Session, broadcaster: JamBroadcaster, jam: Jam, song: Song, ready: bool) -> Song:
    """Toggle the manual ready gate; only legal while the song is open."""
    with queue_ordering.jam_writer(db, jam):
        _reload(db, song)
        if song.status != SongStatus.open_for_candidates:
            raise InvalidState("Ready can only be toggled while the song is open for candidates")
        song.ready = bool(ready)
        db.commit()
    db.refresh(song)
    logger.info("Song %s ready=%s", song.song_id, song.ready)
    publish_for_jam(broadcaster, jam, events.SONG_READY_CHANGED, {"song_id": song.song_id, "ready": song.ready})
    return song


def delete_song(db: Session, broadcaster: JamBroadcaster, jam: Jam, song: Song) -> list[str]:
    """Delete a song with its slots, candidates and ratings, then re-pack its bucket."""
    song_id = song.song_id
    with queue_ordering.jam_writer(db, jam):
        _reload(db, song)
        status = SongStatus(song.status)
        db.delete(song)
        db.flush()
        remaining = queue_ordering.compact(db, jam.jam_id, status)
        db.commit()

    logger.info("Deleted song %s from jam %s", song_id, jam.jam_id)
    publish_for_jam(broadcaster, jam, events.SONG_DELETED, {"song_id": song_id})
    publish_for_jam(
        broadcaster, jam, events.SONG_ORDER_CHANGED, {"status": status.value, "ordered_ids": remaining}
    )
    return remaining


def lineup_completeness(song: Song) -> dict[str, Any]:
    """Required instruments vs. required instruments with at least one approval."""
    approved_instruments = {
        Instrument(c.instrument) for c in song.candidates if c.status == CandidateStatus.approved
    }
    required = [Instrument(s.instrument) for s in song.instrument_slots if s.required]
    approved_required = sum(1 for instrument in required if instrument in approved_instruments)
    return {
        "required_instruments": len(required),
        "approved_required": approved_required,
        "is_full": approved_required == len(required),
    }
