"""Pydantic schemas for song ratings."""
from typing import Optional
from pydantic import BaseModel, model_validator


class RatingCreate(BaseModel):
    stars: int
    guest_user_id: Optional[str] = None  # rate as a checked-in guest of the event
    user_id: Optional[str] = None        # rate as an authenticated staff user

    @model_validator(mode="after")
    def one_rater(self):
        if (self.guest_user_id is None) == (self.user_id is None):
            raise ValueError("Provide exactly one of guest_user_id or user_id")
        return self


class RatingSummaryOut(BaseModel):
    song_id: str
    average: Optional[float] = None
    count: int
