"""Rating routes for played songs."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from jamqueue.database import get_db
from jamqueue.schemas.rating import RatingCreate, RatingSummaryOut
from jamqueue.services import guest_service, jam_service, rating_service
from jamqueue.services.broadcaster import JamBroadcaster, get_broadcaster

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{event_id}/jams/{jam_id}/songs/{song_id}/ratings", response_model=RatingSummaryOut)
def rate_song(
    event_id: str,
    jam_id: str,
    song_id: str,
    payload: RatingCreate,
    db: Session = Depends(get_db),
    broadcaster: JamBroadcaster = Depends(get_broadcaster),
):
    """Rate a played song 1-5 stars; rating again overwrites the earlier stars."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    guest = None
    if payload.guest_user_id is not None:
        guest = guest_service.resolve_guest(db, event_id, payload.guest_user_id)
    result = rating_service.rate(
        db, broadcaster, jam, song, payload.stars, guest=guest, user_id=payload.user_id,
    )
    return {"song_id": song_id, **result}


@router.get("/{event_id}/jams/{jam_id}/songs/{song_id}/ratings", response_model=RatingSummaryOut)
def rating_summary(event_id: str, jam_id: str, song_id: str, db: Session = Depends(get_db)):
    """Average stars and number of ratings of a song."""
    jam = jam_service.get_jam(db, event_id, jam_id)
    song = jam_service.get_song(db, jam, song_id)
    return {"song_id": song.song_id, **rating_service.summary(db, song.song_id)}
