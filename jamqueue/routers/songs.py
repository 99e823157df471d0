"""Staff song routes: creation, manifests, release batches, lifecycle and ordering.

Every write delegates to the song, ordering and ledger services, which own the
invariants and publish change events.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from jamqueue.database import get_db
from jamqueue.schemas.song import (
    BucketOrderOut,
    InstrumentSlotOut,
    InstrumentSlotsReplace,
    SongCreate,
    SongMove,
    SongOut,
    SongReady,
    SongRelease,
    SongReorder,
)
from jamqueue.services import jam_service, queue_ordering, queue_views, song_service
from jamqueue.services.broadcaster import JamBroadcaster, get_broadcaster

logger = logging.getLogger(__name__)
router = APIRouter()


def _song_fields(payload: SongCreate) -> dict:
    return payload.model_dump(exclude={"instrument_slots"}, exclude_unset=True)


def _manifest(payload) -> list[dict]:
    return [slot.model_dump() for slot in payload.instrument_slots]


@router.post("/{event_id}/jams/songs", response_model=SongOut, status_code=status.HTTP_201_CREATED)
def create_song_in_default_jam(
    event_id: str,
    payload: SongCreate,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Create a song in the event's first jam, creating that jam when there is none."""
    jam = jam_service.ensure_default_jam(db, event_id)
    return song_service.create_song(db, broadcaster, jam, _song_fields(payload), _manifest(payload))


@router.get("/{event_id}/jams/songs")
def search_songs(
    event_id: str,
    status: Optional[str] = Query(None, pattern="^(planned|open_for_candidates|on_stage|played|canceled)$"),
    search: Optional[str] = Query(None, description="Case-insensitive title substring"),
    release_batch: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = Query("order_index", pattern="^(order_index|title|status|created_at)$"),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    """Paginated, filterable song listing across the event's jams."""
    return queue_views.search_songs(
        db,
        event_id,
        status=status,
        search=search,
        release_batch=release_batch,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        order=order,
    )


@router.post("/{event_id}/jams/{jam_id}/songs", response_model=SongOut, status_code=status.HTTP_201_CREATED)
def create_song(
    event_id: str,
    jam_id: str,
    payload: SongCreate,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Create a planned song at the end of the jam's planned bucket."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    return song_service.create_song(db, broadcaster, jam, _song_fields(payload), _manifest(payload))


@router.put("/{event_id}/jams/{jam_id}/songs/{song_id}/instrument-slots", response_model=list[InstrumentSlotOut])
def replace_instrument_slots(
    event_id: str,
    jam_id: str,
    song_id: str,
    payload: InstrumentSlotsReplace,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Replace the song's whole instrument manifest."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    return song_service.replace_instrument_slots(db, broadcaster, jam, song, _manifest(payload))


@router.post("/{event_id}/jams/{jam_id}/songs/release", response_model=list[SongOut])
def release_songs(
    event_id: str,
    jam_id: str,
    payload: SongRelease,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Open or close a batch of songs, all or nothing."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    if payload.action == "open":
        return song_service.open_songs(db, broadcaster, jam, payload.song_ids)
    return song_service.close_songs(db, broadcaster, jam, payload.song_ids)


@router.post("/{event_id}/jams/{jam_id}/songs/reorder", response_model=BucketOrderOut)
def reorder_songs(
    event_id: str,
    jam_id: str,
    payload: SongReorder,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Reorder one status bucket; unmentioned songs keep their relative order after the given ones."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    ordered = queue_ordering.reorder(db, broadcaster, jam, payload.status, payload.ordered_ids)
    return {"status": payload.status, "ordered_ids": ordered}


@router.post("/{event_id}/jams/{jam_id}/songs/{song_id}/status", response_model=SongOut)
def move_song(
    event_id: str,
    jam_id: str,
    song_id: str,
    payload: SongMove,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Move a song through its lifecycle."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    return song_service.move_song(db, broadcaster, jam, song, payload.status)


@router.post("/{event_id}/jams/{jam_id}/songs/{song_id}/ready", response_model=SongOut)
def set_ready(
    event_id: str,
    jam_id: str,
    song_id: str,
    payload: SongReady,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Mark an open song ready (or not) to go on stage."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    return song_service.set_ready(db, broadcaster, jam, song, payload.ready)


@router.delete("/{event_id}/jams/{jam_id}/songs/{song_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_song(
    event_id: str,
    jam_id: str,
    song_id: str,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Delete a song together with its slots, candidates and ratings."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    song_service.delete_song(db, broadcaster, jam, song)
