"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    show_id: int
    seats: list[str] = Field(..., min_length=1, max_length=50)


class BookingResponse(BaseModel):
    id: int
    show_id: int
    user_id: str
    seats: list[str]
    amount: float
    status: str
    payment_url: Optional[str] = None
    refund_required: bool = False
    created_at: datetime
    paid_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class OccupiedSeatsResponse(BaseModel):
    show_id: int
    occupied_seats: list[str]


class WebhookAck(BaseModel):
    received: bool = True
    booking_id: Optional[int] = None
    status: Optional[str] = None
