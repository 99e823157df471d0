"""Rating aggregator: post-performance star ratings, one per rater per song."""
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jamqueue.exceptions import InvalidState, InvalidStars, NotFound, SongNotPlayed
from jamqueue.models.guest import Guest
from jamqueue.models.jam import Jam
from jamqueue.models.rating import Rating
from jamqueue.models.song import Song, SongStatus
from jamqueue.services import broadcaster as events
from jamqueue.services.broadcaster import JamBroadcaster, publish_for_jam
from jamqueue.services.guest_service import require_checked_in

logger = logging.getLogger(__name__)

MIN_STARS = 1
MAX_STARS = 5


def _average(total: int, count: int) -> float:
    """Mean rounded half up to 2 decimals (33/8 -> 4.13)."""
    mean = Decimal(int(total)) / Decimal(count)
    return float(mean.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def summary(db: Session, song_id: str) -> dict[str, Any]:
    """Average (2 decimals, ``None`` when unrated) and count of a song's ratings."""
    count, total = (
        db.query(func.count(Rating.rating_id), func.coalesce(func.sum(Rating.stars), 0))
        .filter(Rating.song_id == song_id)
        .one()
    )
    average = _average(total, count) if count else None
    return {"average": average, "count": count}


def summarize_loaded(song: Song) -> Optional[dict[str, Any]]:
    """Summary from an already-loaded ``song.ratings``; ``None`` when unrated."""
    ratings = song.ratings
    if not ratings:
        return None
    return {"average": _average(sum(r.stars for r in ratings), len(ratings)), "count": len(ratings)}


def _rater_filter(guest: Optional[Guest], user_id: Optional[str]):
    if guest is not None:
        return Rating.guest_id == guest.guest_id
    return Rating.user_id == user_id


def rate(
    db: Session,
    broadcaster: JamBroadcaster,
    jam: Jam,
    song: Song,
    stars: int,
    guest: Optional[Guest] = None,
    user_id: Optional[str] = None,
) -> dict[str, Any]:
    """Record or overwrite the rater's stars for a played song.

    The rater is either a checked-in ``guest`` or an authenticated ``user_id``.
    Returns the recomputed summary, which is also broadcast.
    """
    if (guest is None) == (user_id is None):
        raise InvalidState("A rating needs exactly one rater: a guest or a user")
    if song.status != SongStatus.played:
        raise SongNotPlayed("Songs can only be rated after they are played")
    if isinstance(stars, bool) or not isinstance(stars, int) or not MIN_STARS <= stars <= MAX_STARS:
        raise InvalidStars(f"Stars must be an integer between {MIN_STARS} and {MAX_STARS}")
    if guest is not None:
        if guest.event_id != jam.event_id:
            raise NotFound("Guest not found for this event")
        require_checked_in(guest)

    query = db.query(Rating).filter(Rating.song_id == song.song_id, _rater_filter(guest, user_id))
    now = datetime.now(timezone.utc)
    rating = query.first()
    if rating is None:
        db.add(Rating(
            song_id=song.song_id,
            guest_id=guest.guest_id if guest is not None else None,
            user_id=user_id,
            stars=stars,
            rated_at=now,
        ))
        try:
            db.commit()
        except IntegrityError:
            # A concurrent first rating from the same rater won; overwrite it
            db.rollback()
            rating = query.one()
    if rating is not None:
        rating.stars = stars
        rating.rated_at = now
        db.commit()

    result = summary(db, song.song_id)
    logger.info(
        "Song %s rated %d by %s (average %s over %d)",
        song.song_id, stars, guest.guest_id if guest is not None else user_id,
        result["average"], result["count"],
    )
    publish_for_jam(broadcaster, jam, events.RATING_SUMMARY_UPDATED, {"song_id": song.song_id, **result})
    return result
