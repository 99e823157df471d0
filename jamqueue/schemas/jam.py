"""Pydantic schemas for Jams."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class JamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=100)
    notes: Optional[str] = None
    status: str = "active"  # active, inactive
    order_index: int = 0


class JamOut(BaseModel):
    jam_id: str
    event_id: str
    name: str
    slug: str
    status: str
    notes: Optional[str] = None
    order_index: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DefaultJamOut(BaseModel):
    jam_id: Optional[str] = None
