"""InstrumentSlot ORM model: per-song, per-instrument capacity bucket."""
import uuid
import enum
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from jamqueue.database import Base


class Instrument(str, enum.Enum):
    guitar = "guitar"
    bass = "bass"
    drums = "drums"
    keys = "keys"
    vocals = "vocals"
    horns = "horns"
    percussion = "percussion"
    strings = "strings"
    other = "other"


class InstrumentSlot(Base):
    __tablename__ = "jam_song_instrument_slots"
    __table_args__ = (UniqueConstraint("song_id", "instrument", name="uq_instrument_slots_song_instrument"),)

    slot_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    song_id = Column(String(36), ForeignKey("jam_songs.song_id", ondelete="CASCADE"), nullable=False, index=True)
    instrument = Column(SAEnum(Instrument), nullable=False)
    slots = Column(Integer, nullable=False, default=1)
    required = Column(Boolean, nullable=False, default=True)
    fallback_allowed = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    song = relationship("Song", back_populates="instrument_slots")
