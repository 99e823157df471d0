"""Pydantic schemas for candidate applications."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from jamqueue.models.instrument_slot import Instrument


class CandidateApply(BaseModel):
    instrument: Instrument
    user_id: str  # the applying guest's user id within the event


class CandidateOut(BaseModel):
    candidate_id: str
    song_id: str
    instrument: str
    guest_id: str
    status: str
    applied_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    model_config = {"from_attributes": True}
