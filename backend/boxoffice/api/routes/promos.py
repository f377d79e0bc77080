"""
Promo code preview: price a code against a cart without using it up.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.security import Identity, get_current_identity
from boxoffice.db.session import get_db
from boxoffice.schemas.promo import PromoPreviewRequest, PromoPreviewResponse
from boxoffice.services.promo_service import preview_promo

router = APIRouter(prefix="/promos", tags=["Promos"])


@router.post("/preview", response_model=PromoPreviewResponse)
async def preview(
    body: PromoPreviewRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    application = await preview_promo(
        db, identity.organization_id, body.code, body.order_subtotal, free_item_value=body.free_item_value,
    )
    await db.commit()
    return application
