"""Jam ORM model: a live-performance session belonging to one event."""
import uuid
import enum
from sqlalchemy import Column, String, Text, Integer, DateTime, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from jamqueue.database import Base


class JamStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class Jam(Base):
    __tablename__ = "event_jams"
    __table_args__ = (UniqueConstraint("event_id", "name", name="uq_event_jams_event_name"),)

    jam_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    status = Column(SAEnum(JamStatus), nullable=False, default=JamStatus.active)
    notes = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    songs = relationship("Song", back_populates="jam", cascade="all, delete-orphan")
