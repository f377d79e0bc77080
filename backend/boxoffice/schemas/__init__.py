from boxoffice.schemas.booking import BookingCreate, BookingResponse, ConcessionLine, SeatSelection
from boxoffice.schemas.inventory import InventoryHistoryResponse, StockMovementResponse
from boxoffice.schemas.loyalty import LoyaltyBalanceResponse, LoyaltyTransactionResponse
from boxoffice.schemas.promo import PromoPreviewRequest, PromoPreviewResponse

__all__ = [
    "BookingCreate", "BookingResponse", "ConcessionLine", "SeatSelection",
    "InventoryHistoryResponse", "StockMovementResponse",
    "LoyaltyBalanceResponse", "LoyaltyTransactionResponse",
    "PromoPreviewRequest", "PromoPreviewResponse",
]
