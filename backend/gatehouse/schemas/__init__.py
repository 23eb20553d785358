from gatehouse.schemas.user import UserCreate, UserResponse, UserLogin, Token
from gatehouse.schemas.event import (
    EventCreate, EventResponse, EventListResponse, TierCreate, TierResponse,
    PromoCodeCreate, PromoCodeResponse, PromoterCodeCreate, PromoterCodeResponse,
)
from gatehouse.schemas.reservation import ReservationCreate, ReservationResponse
from gatehouse.schemas.pricing import PriceQuoteRequest, PriceBreakdownResponse
from gatehouse.schemas.order import (
    CheckoutRequest, CheckoutResponse, OrderResponse, PaymentConfirmRequest,
    PaymentConfirmResponse, WebhookAck, OrderCredentialsResponse,
)
from gatehouse.schemas.scan import ScanRequest, ScanResponse
from gatehouse.schemas.queue import QueueJoinRequest, QueueTicketResponse

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "Token",
    "EventCreate", "EventResponse", "EventListResponse", "TierCreate", "TierResponse",
    "PromoCodeCreate", "PromoCodeResponse", "PromoterCodeCreate", "PromoterCodeResponse",
    "ReservationCreate", "ReservationResponse",
    "PriceQuoteRequest", "PriceBreakdownResponse",
    "CheckoutRequest", "CheckoutResponse", "OrderResponse", "PaymentConfirmRequest",
    "PaymentConfirmResponse", "WebhookAck", "OrderCredentialsResponse",
    "ScanRequest", "ScanResponse",
    "QueueJoinRequest", "QueueTicketResponse",
]
