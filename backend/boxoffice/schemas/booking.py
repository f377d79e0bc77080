"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field


class SeatSelection(BaseModel):
    row_label: str = Field(..., min_length=1, max_length=5)
    seat_number: int = Field(..., gt=0)


class ConcessionLine(BaseModel):
    item_id: int
    quantity: int = Field(..., gt=0, le=50)


class BookingCreate(BaseModel):
    showtime_id: int
    seats: list[SeatSelection] = Field(..., min_length=1, max_length=20)
    concessions: list[ConcessionLine] = Field(default_factory=list)
    promo_code: Optional[str] = Field(None, min_length=1, max_length=50)
    loyalty_reward_id: Optional[int] = None
    channel: Literal["online", "box_office"] = "online"
    customer_email: Optional[EmailStr] = None
    # Box office only: staff ring up a sale for a known customer
    customer_id: Optional[int] = None
    shift_id: Optional[int] = None


class BookedSeatResponse(BaseModel):
    row_label: str
    seat_number: int
    seat_type: str
    price: Decimal
    is_active: bool

    model_config = {"from_attributes": True}


class BookingConcessionResponse(BaseModel):
    concession_item_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    organization_id: int
    customer_id: Optional[int]
    showtime_id: int
    status: str
    channel: str
    booking_reference: str
    subtotal: Decimal
    promo_discount_amount: Decimal
    loyalty_discount_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    promo_code_id: Optional[int]
    loyalty_reward_id: Optional[int]
    points_earned: int
    points_redeemed: int
    shift_id: Optional[int]
    paid_at: Optional[datetime]
    activated_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    seats: list[BookedSeatResponse] = []
    concessions: list[BookingConcessionResponse] = []

    model_config = {"from_attributes": True}


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class BookingActivate(BaseModel):
    shift_id: Optional[int] = None


class ReferenceRegenerateResponse(BaseModel):
    booking_id: int
    booking_reference: str
    retired_reference: str
