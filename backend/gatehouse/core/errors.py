"""
Domain error taxonomy.

Every failure a client can observe carries an enumerated `code` and the HTTP
status it maps to. Services raise these; the API layer renders them as
`{"code": ..., "detail": ...}` through a single exception handler.
"""

from fastapi import status


class GatehouseError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Unexpected error"

    def __init__(self, detail: str | None = None, **context):
        self.detail = detail or self.default_detail
        self.context = context
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail}


# Input errors: reject, no side effects

class InvalidRequestError(GatehouseError):
    code = "INVALID_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class EventNotFoundError(GatehouseError):
    code = "EVENT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Event not found"


class TierNotFoundError(GatehouseError):
    code = "TIER_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Ticket tier not found"


class InvalidQuantityError(GatehouseError):
    code = "INVALID_QUANTITY"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Quantity outside the allowed range for this tier"


class SalesClosedError(GatehouseError):
    code = "SALES_CLOSED"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Ticket sales for this tier have ended"


class ReservationNotFoundError(GatehouseError):
    code = "RESERVATION_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Reservation not found"


class OrderNotFoundError(GatehouseError):
    code = "ORDER_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Order not found"


class QueueTicketNotFoundError(GatehouseError):
    code = "QUEUE_TICKET_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Queue ticket not found"


# Conflict errors: enumerated reason, no partial mutation

class InsufficientInventoryError(GatehouseError):
    code = "INSUFFICIENT_INVENTORY"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Not enough tickets remaining"


class InventoryContentionError(GatehouseError):
    code = "INVENTORY_CONTENTION"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "High demand for this tier, please try again"


class InvalidStateTransitionError(GatehouseError):
    code = "INVALID_STATE_TRANSITION"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Invalid state transition"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Cannot transition order from '{from_status}' to '{to_status}'",
            from_status=from_status,
            to_status=to_status,
        )
        self.from_status = from_status
        self.to_status = to_status


class ConflictError(GatehouseError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Resource already exists"


# Staleness: surfaced as retry

class ReservationExpiredError(GatehouseError):
    code = "RESERVATION_EXPIRED"
    status_code = status.HTTP_410_GONE
    default_detail = "Reservation has expired, please select tickets again"


class QueueCooldownError(GatehouseError):
    code = "QUEUE_COOLDOWN"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Please wait before rejoining the queue"


# Access

class InvalidCredentialsError(GatehouseError):
    code = "INVALID_CREDENTIALS"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid email or password"


class AccountDisabledError(GatehouseError):
    code = "ACCOUNT_DISABLED"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Account is deactivated"


class ForbiddenError(GatehouseError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not allowed"


class ReservationForbiddenError(ForbiddenError):
    code = "RESERVATION_FORBIDDEN"
    default_detail = "Reservation belongs to another user"


class AdmissionRequiredError(ForbiddenError):
    code = "ADMISSION_REQUIRED"
    default_detail = "A valid queue admission is required for this event"


# Integrity: reject and log, never leak expected values

class InvalidSignatureError(GatehouseError):
    code = "INVALID_SIGNATURE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Payment signature verification failed"


class WebhookSignatureError(GatehouseError):
    code = "INVALID_SIGNATURE"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Webhook signature verification failed"


class PaymentIntentMismatchError(GatehouseError):
    code = "PAYMENT_INTENT_MISMATCH"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Payment does not belong to this order"


# Upstream

class PaymentGatewayError(GatehouseError):
    code = "PAYMENT_GATEWAY_UNAVAILABLE"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment provider unavailable, please retry"
