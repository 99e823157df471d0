"""Song ORM model: a queue item with its own lifecycle inside a jam."""
import uuid
import enum
from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from jamqueue.database import Base


class SongStatus(str, enum.Enum):
    planned = "planned"
    open_for_candidates = "open_for_candidates"
    on_stage = "on_stage"
    played = "played"
    canceled = "canceled"


class Song(Base):
    __tablename__ = "jam_songs"

    song_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    jam_id = Column(String(36), ForeignKey("event_jams.jam_id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    artist = Column(String(255), nullable=True)
    key = Column(String(10), nullable=True)
    tempo_bpm = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    release_batch = Column(Integer, nullable=True)
    status = Column(SAEnum(SongStatus), nullable=False, default=SongStatus.planned)
    ready = Column(Boolean, nullable=False, default=False)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    jam = relationship("Jam", back_populates="songs")
    instrument_slots = relationship("InstrumentSlot", back_populates="song", cascade="all, delete-orphan")
    candidates = relationship("Candidate", back_populates="song", cascade="all, delete-orphan")
    ratings = relationship("Rating", back_populates="song", cascade="all, delete-orphan")
