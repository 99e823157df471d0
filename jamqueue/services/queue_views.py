"""Read models over jams and songs for staff and guest screens.

Pure queries: nothing here writes or publishes.
"""
from typing import Any, Optional

from sqlalchemy.orm import Session, selectinload

from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.guest import Guest
from jamqueue.models.jam import Jam
from jamqueue.models.song import Song, SongStatus
from jamqueue.services import capacity_ledger, jam_service, rating_service, song_service


SORTABLE_FIELDS = {
    "order_index": Song.order_index,
    "title": Song.title,
    "status": Song.status,
    "created_at": Song.created_at,
}

_song_loading = (
    selectinload(Song.instrument_slots),
    selectinload(Song.candidates).selectinload(Candidate.guest),
    selectinload(Song.ratings),
)


def _instrument_buckets(song: Song) -> list[dict[str, Any]]:
    """Candidates grouped per instrument into approved / pending lists."""
    buckets: dict[str, dict[str, Any]] = {}
    for slot in song.instrument_slots:
        buckets[slot.instrument.value] = {
            "instrument": slot.instrument.value,
            "slots": slot.slots,
            "required": slot.required,
            "fallback_allowed": slot.fallback_allowed,
            "approved": [],
            "pending": [],
        }
    for candidate in song.candidates:
        if candidate.status == CandidateStatus.rejected:
            continue
        instrument = candidate.instrument.value
        bucket = buckets.setdefault(instrument, {
            "instrument": instrument,
            "slots": 0,
            "required": False,
            "fallback_allowed": True,
            "approved": [],
            "pending": [],
        })
        entry = {
            "candidate_id": candidate.candidate_id,
            "guest_id": candidate.guest_id,
            "display_name": candidate.guest.display_name if candidate.guest else None,
            "status": candidate.status.value,
            "applied_at": candidate.applied_at,
        }
        bucket["approved" if candidate.status == CandidateStatus.approved else "pending"].append(entry)
    return list(buckets.values())


def _song_base(song: Song) -> dict[str, Any]:
    return {
        "song_id": song.song_id,
        "jam_id": song.jam_id,
        "title": song.title,
        "artist": song.artist,
        "key": song.key,
        "tempo_bpm": song.tempo_bpm,
        "status": song.status.value,
        "ready": bool(song.ready),
        "order_index": song.order_index,
        "release_batch": song.release_batch,
    }


def staff_song_view(song: Song) -> dict[str, Any]:
    return {
        **_song_base(song),
        "instrument_buckets": _instrument_buckets(song),
        "lineup_completeness": song_service.lineup_completeness(song),
        "rating_summary": rating_service.summarize_loaded(song),
    }


def open_song_view(song: Song, guest: Optional[Guest] = None) -> dict[str, Any]:
    my_application = None
    if guest is not None:
        mine = next((c for c in song.candidates if c.guest_id == guest.guest_id), None)
        if mine is not None:
            my_application = {
                "candidate_id": mine.candidate_id,
                "instrument": mine.instrument.value,
                "status": mine.status.value,
            }
    return {
        **_song_base(song),
        "instrument_slots": capacity_ledger.instrument_capacity(song),
        "my_application": my_application,
        "lineup_completeness": song_service.lineup_completeness(song),
        "rating_summary": rating_service.summarize_loaded(song),
    }


def _jam_ref(jam: Jam) -> dict[str, Any]:
    return {"jam_id": jam.jam_id, "name": jam.name, "status": jam.status.value}


def jam_overview(db: Session, event_id: str) -> list[dict[str, Any]]:
    """Every jam of the event with its songs in queue order (staff view)."""
    result = []
    for jam in jam_service.list_jams(db, event_id):
        songs = (
            db.query(Song)
            .options(*_song_loading)
            .filter(Song.jam_id == jam.jam_id)
            .order_by(Song.order_index, Song.created_at)
            .all()
        )
        result.append({
            "jam_id": jam.jam_id,
            "event_id": jam.event_id,
            "name": jam.name,
            "slug": jam.slug,
            "status": jam.status.value,
            "notes": jam.notes,
            "order_index": jam.order_index,
            "songs": [staff_song_view(s) for s in songs],
        })
    return result


def search_songs(
    db: Session,
    event_id: str,
    status: Optional[str] = None,
    search: Optional[str] = None,
    release_batch: Optional[int] = None,
    page: int = 1,
    page_size: int = 20,
    sort_by: str = "order_index",
    order: str = "asc",
) -> dict[str, Any]:
    """Paginated song listing across every jam of an event."""
    query = db.query(Song).join(Jam, Song.jam_id == Jam.jam_id).filter(Jam.event_id == event_id)
    if status:
        query = query.filter(Song.status == SongStatus(status))
    if release_batch is not None:
        query = query.filter(Song.release_batch == release_batch)
    if search:
        query = query.filter(Song.title.ilike(f"%{search}%"))

    total = query.count()
    column = SORTABLE_FIELDS.get(sort_by, Song.order_index)
    column = column.desc() if order.lower() == "desc" else column.asc()
    page = max(page, 1)
    page_size = max(page_size, 1)
    songs = (
        query.options(*_song_loading)
        .order_by(column, Song.created_at)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "data": [staff_song_view(s) for s in songs],
        "meta": {"page": page, "page_size": page_size, "total": total},
    }


def _songs_in_status(db: Session, jam_ids: list[str], status: SongStatus) -> list[Song]:
    if not jam_ids:
        return []
    return (
        db.query(Song)
        .options(*_song_loading)
        .filter(Song.jam_id.in_(jam_ids), Song.status == status)
        .order_by(Song.order_index, Song.created_at)
        .all()
    )


def jam_open_songs(db: Session, jam: Jam, guest: Optional[Guest] = None) -> dict[str, Any]:
    """Open songs of one jam; ``my_application`` is filled when a guest is known."""
    songs = _songs_in_status(db, [jam.jam_id], SongStatus.open_for_candidates)
    return {
        "jam": {**_jam_ref(jam), "event_id": jam.event_id},
        "songs": [open_song_view(s, guest) for s in songs],
    }


def event_open_songs(db: Session, event_id: str, guest: Guest) -> list[dict[str, Any]]:
    """Open songs across every jam of the event, for a checked-in guest."""
    jams = {j.jam_id: j for j in db.query(Jam).filter(Jam.event_id == event_id).all()}
    songs = _songs_in_status(db, list(jams), SongStatus.open_for_candidates)
    return [{"jam": _jam_ref(jams[s.jam_id]), **open_song_view(s, guest)} for s in songs]


def my_on_stage_songs(db: Session, event_id: str, guest: Guest) -> list[dict[str, Any]]:
    """On-stage songs where the guest holds an approved slot."""
    jams = {j.jam_id: j for j in db.query(Jam).filter(Jam.event_id == event_id).all()}
    result = []
    for song in _songs_in_status(db, list(jams), SongStatus.on_stage):
        mine = next(
            (
                c for c in song.candidates
                if c.guest_id == guest.guest_id and c.status == CandidateStatus.approved
            ),
            None,
        )
        if mine is None:
            continue
        result.append({
            "jam": _jam_ref(jams[song.jam_id]),
            "song_id": song.song_id,
            "title": song.title,
            "artist": song.artist,
            "status": song.status.value,
            "instrument_slots": [
                {
                    "instrument": s.instrument.value,
                    "slots": s.slots,
                    "required": s.required,
                    "fallback_allowed": s.fallback_allowed,
                }
                for s in song.instrument_slots
            ],
            "my_application": {"instrument": mine.instrument.value, "status": mine.status.value},
        })
    return result
