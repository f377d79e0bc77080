"""
Pydantic schemas for concession stock management.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class StartTracking(BaseModel):
    initial_quantity: int = Field(..., ge=0)


class Restock(BaseModel):
    quantity: int = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)


class StockAdjustment(BaseModel):
    delta: int
    notes: Optional[str] = Field(None, max_length=500)


class StockMovementResponse(BaseModel):
    item_id: int
    tracked: bool
    previous_quantity: Optional[int]
    new_quantity: Optional[int]
    change_amount: int
    low_stock: bool = False

    model_config = {"from_attributes": True}


class InventoryHistoryResponse(BaseModel):
    id: int
    item_id: int
    previous_quantity: int
    new_quantity: int
    change_amount: int
    change_type: str
    booking_id: Optional[int]
    created_by: Optional[int]
    notes: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class ConcessionItemResponse(BaseModel):
    id: int
    name: str
    category: Optional[str]
    price: Decimal
    is_available: bool
    track_inventory: bool
    stock_quantity: Optional[int]
    low_stock_threshold: int

    model_config = {"from_attributes": True}
