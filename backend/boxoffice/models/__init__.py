from boxoffice.models.catalog import Screen, SeatLayout, Showtime
from boxoffice.models.booking import Booking, BookedSeat, BookingConcession, RetiredReference
from boxoffice.models.inventory import ConcessionItem, InventoryHistory
from boxoffice.models.promo import PromoCode
from boxoffice.models.loyalty import LoyaltySettings, LoyaltyReward, LoyaltyAccount, LoyaltyTransaction
from boxoffice.models.outbox import OutboxEvent

__all__ = [
    "Screen", "SeatLayout", "Showtime",
    "Booking", "BookedSeat", "BookingConcession", "RetiredReference",
    "ConcessionItem", "InventoryHistory",
    "PromoCode",
    "LoyaltySettings", "LoyaltyReward", "LoyaltyAccount", "LoyaltyTransaction",
    "OutboxEvent",
]
