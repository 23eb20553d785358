from gatehouse.models.user import User, UserRole
from gatehouse.models.event import Event, TicketTier, DiscountType
from gatehouse.models.promo import PromoCode, PromoterCode, PromoRedemption
from gatehouse.models.reservation import Reservation, ReservationStatus
from gatehouse.models.order import Order
from gatehouse.models.payment import PaymentIntent, PaymentWebhookEvent
from gatehouse.models.scan import ScanRecord, ScanAttempt, BoundDevice, ScanResult
from gatehouse.models.queue import QueueTicket, QueueLane, QueueStatus

__all__ = [
    "User", "UserRole",
    "Event", "TicketTier", "DiscountType",
    "PromoCode", "PromoterCode", "PromoRedemption",
    "Reservation", "ReservationStatus",
    "Order",
    "PaymentIntent", "PaymentWebhookEvent",
    "ScanRecord", "ScanAttempt", "BoundDevice", "ScanResult",
    "QueueTicket", "QueueLane", "QueueStatus",
]
