"""Pydantic schemas for event guests."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class GuestCreate(BaseModel):
    display_name: str = Field(min_length=1, max_length=255)
    user_id: Optional[str] = None


class GuestOut(BaseModel):
    guest_id: str
    event_id: str
    user_id: Optional[str] = None
    display_name: str
    check_in_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
