"""Pydantic schemas for Songs and their instrument manifests."""
from __future__ import annotations
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from jamqueue.models.instrument_slot import Instrument


class InstrumentSlotIn(BaseModel):
    instrument: Instrument
    slots: int = Field(default=1, ge=1)
    required: bool = True
    fallback_allowed: bool = True


def _unique_instruments(slots: list[InstrumentSlotIn]) -> list[InstrumentSlotIn]:
    seen = set()
    for slot in slots:
        if slot.instrument in seen:
            raise ValueError(f"Instrument '{slot.instrument.value}' appears more than once")
        seen.add(slot.instrument)
    return slots


class SongCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    artist: Optional[str] = None
    key: Optional[str] = Field(default=None, max_length=10)
    tempo_bpm: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None
    release_batch: Optional[int] = None
    instrument_slots: list[InstrumentSlotIn] = []

    @field_validator("instrument_slots")
    @classmethod
    def unique_instruments(cls, v):
        return _unique_instruments(v)


class InstrumentSlotsReplace(BaseModel):
    instrument_slots: list[InstrumentSlotIn]

    @field_validator("instrument_slots")
    @classmethod
    def unique_instruments(cls, v):
        return _unique_instruments(v)


class SongRelease(BaseModel):
    song_ids: list[str] = Field(min_length=1)
    action: Literal["open", "close"]


class SongMove(BaseModel):
    status: Literal["planned", "open_for_candidates", "on_stage", "played", "canceled"]


class SongReady(BaseModel):
    ready: bool


class SongReorder(BaseModel):
    status: Literal["planned", "open_for_candidates", "on_stage", "played", "canceled"]
    ordered_ids: list[str]


class InstrumentSlotOut(BaseModel):
    slot_id: str
    instrument: str
    slots: int
    required: bool
    fallback_allowed: bool

    model_config = {"from_attributes": True}


class SongOut(BaseModel):
    song_id: str
    jam_id: str
    title: str
    artist: Optional[str] = None
    key: Optional[str] = None
    tempo_bpm: Optional[int] = None
    notes: Optional[str] = None
    release_batch: Optional[int] = None
    status: str
    ready: bool
    order_index: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    instrument_slots: list[InstrumentSlotOut] = []

    model_config = {"from_attributes": True}


class BucketOrderOut(BaseModel):
    status: str
    ordered_ids: list[str]
