"""Jam service: event/jam resolution and jam creation."""
import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jamqueue.exceptions import DuplicateJam, NotFound
from jamqueue.models.jam import Jam, JamStatus
from jamqueue.models.song import Song

logger = logging.getLogger(__name__)


def create_jam(
    db: Session,
    event_id: str,
    name: str,
    slug: str,
    notes: Optional[str] = None,
    status: str = "active",
    order_index: int = 0,
) -> Jam:
    """Create a jam; names are unique per event, slugs globally."""
    existing = db.query(Jam).filter(or_(Jam.slug == slug, (Jam.event_id == event_id) & (Jam.name == name))).first()
    if existing:
        field = "slug" if existing.slug == slug else "name"
        raise DuplicateJam(f"A jam with this {field} already exists")

    jam = Jam(
        event_id=event_id,
        name=name,
        slug=slug,
        notes=notes,
        status=JamStatus(status),
        order_index=order_index,
    )
    db.add(jam)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateJam("A jam with this slug already exists")
    db.refresh(jam)
    logger.info("Created jam '%s' (%s) for event %s", name, jam.jam_id, event_id)
    return jam


def ensure_default_jam(db: Session, event_id: str) -> Jam:
    """Return the event's first jam, creating one when the event has none yet."""
    jam = first_jam(db, event_id)
    if jam:
        return jam
    return create_jam(db, event_id=event_id, name=str(event_id), slug=f"jam-{event_id}")


def first_jam(db: Session, event_id: str) -> Optional[Jam]:
    return (
        db.query(Jam)
        .filter(Jam.event_id == event_id)
        .order_by(Jam.order_index, Jam.created_at)
        .first()
    )


def list_jams(db: Session, event_id: str) -> list[Jam]:
    return db.query(Jam).filter(Jam.event_id == event_id).order_by(Jam.order_index, Jam.created_at).all()


def get_jam(db: Session, event_id: str, jam_id: str) -> Jam:
    """Resolve a jam, requiring it to belong to ``event_id``."""
    jam = db.query(Jam).filter(Jam.jam_id == jam_id, Jam.event_id == event_id).first()
    if not jam:
        raise NotFound("Jam not found")
    return jam


def get_song(db: Session, jam: Jam, song_id: str) -> Song:
    song = db.query(Song).filter(Song.song_id == song_id, Song.jam_id == jam.jam_id).first()
    if not song:
        raise NotFound("Song not found")
    return song
