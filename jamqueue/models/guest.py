"""Guest ORM model: local record behind the guest identity provider."""
import uuid
from sqlalchemy import Column, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from jamqueue.database import Base


class Guest(Base):
    __tablename__ = "event_guests"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_guests_event_user"),)

    guest_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    display_name = Column(String(255), nullable=False)
    check_in_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
