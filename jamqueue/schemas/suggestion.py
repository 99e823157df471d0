"""Pydantic schemas for guest music suggestions."""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

from jamqueue.models.instrument_slot import Instrument


class SuggestionInvite(BaseModel):
    user_id: str  # invited guest's user id within the event
    instrument: Instrument


class SuggestionCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    artist: str = Field(min_length=1, max_length=255)
    my_instrument: Instrument
    invites: list[SuggestionInvite] = []


class SuggestionUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    artist: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ParticipantResponse(BaseModel):
    status: Literal["accepted", "rejected"]


class SuggestionApprove(BaseModel):
    jam_id: Optional[str] = None


class ParticipantOut(BaseModel):
    participant_id: str
    guest_id: str
    instrument: str
    is_creator: bool
    status: str

    model_config = {"from_attributes": True}


class SuggestionOut(BaseModel):
    suggestion_id: str
    event_id: str
    title: str
    artist: str
    created_by_guest_id: str
    status: str
    song_id: Optional[str] = None
    created_at: Optional[datetime] = None
    participants: list[ParticipantOut] = []

    model_config = {"from_attributes": True}


class SuggestionStats(BaseModel):
    total: int
    accepted: int
    pending: int
    rejected: int


class SuggestionContext(BaseModel):
    is_creator: bool
    my_status: Optional[str] = None
    can_submit: bool


class SuggestionSummaryOut(SuggestionOut):
    stats: SuggestionStats
    user_context: SuggestionContext


class SuggestionApprovalOut(BaseModel):
    suggestion_id: str
    jam_id: str
    song_id: str
    approved_candidate_ids: list[str]
