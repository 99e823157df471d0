"""Music suggestion ORM models: a guest-proposed song with an invited line-up."""
import uuid
import enum
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from jamqueue.database import Base
from jamqueue.models.instrument_slot import Instrument


class SuggestionStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    approved = "approved"
    rejected = "rejected"


class ParticipantStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class Suggestion(Base):
    __tablename__ = "jam_music_suggestions"

    suggestion_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    artist = Column(String(255), nullable=False)
    created_by_guest_id = Column(String(36), ForeignKey("event_guests.guest_id"), nullable=False, index=True)
    status = Column(SAEnum(SuggestionStatus), nullable=False, default=SuggestionStatus.draft)
    song_id = Column(String(36), ForeignKey("jam_songs.song_id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("Guest")
    participants = relationship(
        "SuggestionParticipant",
        back_populates="suggestion",
        cascade="all, delete-orphan",
        order_by="SuggestionParticipant.created_at",
    )


class SuggestionParticipant(Base):
    __tablename__ = "jam_music_suggestion_participants"
    __table_args__ = (
        UniqueConstraint("suggestion_id", "guest_id", name="uq_suggestion_participants_suggestion_guest"),
    )

    participant_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    suggestion_id = Column(
        String(36), ForeignKey("jam_music_suggestions.suggestion_id", ondelete="CASCADE"), nullable=False, index=True,
    )
    guest_id = Column(String(36), ForeignKey("event_guests.guest_id"), nullable=False, index=True)
    instrument = Column(SAEnum(Instrument), nullable=False)
    is_creator = Column(Boolean, nullable=False, default=False)
    status = Column(SAEnum(ParticipantStatus), nullable=False, default=ParticipantStatus.pending)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    suggestion = relationship("Suggestion", back_populates="participants")
    guest = relationship("Guest")
