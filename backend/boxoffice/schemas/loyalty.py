"""
Pydantic schemas for the loyalty ledger.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LoyaltyBalanceResponse(BaseModel):
    customer_id: int
    loyalty_points: int
    consistent: bool


class LoyaltyTransactionResponse(BaseModel):
    id: int
    customer_id: int
    points: int
    transaction_type: str
    booking_id: Optional[int]
    reward_id: Optional[int]
    description: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class PointsAdjustment(BaseModel):
    points: int
    description: Optional[str] = Field(None, max_length=255)


class PointsExpiry(BaseModel):
    points: int = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=255)
