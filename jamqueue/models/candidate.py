"""Candidate ORM model: a guest's application for an instrument slot."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from jamqueue.database import Base
from jamqueue.models.instrument_slot import Instrument


class CandidateStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class Candidate(Base):
    __tablename__ = "jam_song_candidates"
    __table_args__ = (
        UniqueConstraint("song_id", "instrument", "guest_id", name="uq_candidates_song_instrument_guest"),
    )

    candidate_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    song_id = Column(String(36), ForeignKey("jam_songs.song_id", ondelete="CASCADE"), nullable=False, index=True)
    instrument = Column(SAEnum(Instrument), nullable=False)
    guest_id = Column(String(36), ForeignKey("event_guests.guest_id"), nullable=False, index=True)
    status = Column(SAEnum(CandidateStatus), nullable=False, default=CandidateStatus.pending)
    applied_at = Column(DateTime(timezone=True), server_default=func.now())
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(36), nullable=True)

    song = relationship("Song", back_populates="candidates")
    guest = relationship("Guest")
