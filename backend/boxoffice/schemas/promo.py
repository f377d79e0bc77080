"""
Pydantic schemas for promo code previews.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PromoPreviewRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    order_subtotal: Decimal = Field(..., ge=0)
    free_item_value: Optional[Decimal] = Field(None, ge=0)


class PromoPreviewResponse(BaseModel):
    promo_id: int
    code: str
    discount_amount: Decimal

    model_config = {"from_attributes": True}
