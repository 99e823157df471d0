"""Rating ORM model: one star rating per rater per played song."""
import uuid
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from jamqueue.database import Base


class Rating(Base):
    __tablename__ = "jam_song_ratings"
    __table_args__ = (
        UniqueConstraint("song_id", "guest_id", name="uq_ratings_song_guest"),
        UniqueConstraint("song_id", "user_id", name="uq_ratings_song_user"),
    )

    rating_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    song_id = Column(String(36), ForeignKey("jam_songs.song_id", ondelete="CASCADE"), nullable=False, index=True)
    # Exactly one of guest_id / user_id identifies the rater
    guest_id = Column(String(36), ForeignKey("event_guests.guest_id"), nullable=True)
    user_id = Column(String(36), nullable=True)
    stars = Column(Integer, nullable=False)
    rated_at = Column(DateTime(timezone=True), server_default=func.now())

    song = relationship("Song", back_populates="ratings")
