"""
Payment gateway factory.
Configures which provider adapter checkout and confirmation use.
"""

from typing import Optional

from gatehouse.core.config import get_settings
from gatehouse.infrastructure.razorpay_gateway import RazorpayGateway
from gatehouse.services.interfaces.mock_gateway import MockGateway
from gatehouse.services.interfaces.payment_gateway import PaymentGateway

settings = get_settings()


def build_payment_gateway() -> PaymentGateway:
    """
    Build the configured gateway.

    PAYMENT_GATEWAY=razorpay talks to Razorpay; anything else uses the
    in-process mock.
    """
    if settings.PAYMENT_GATEWAY == "razorpay":
        return RazorpayGateway(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            base_url=settings.RAZORPAY_API_URL,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        )
    return MockGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
    )


# Singleton instance
_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the gateway singleton."""
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway


async def close_payment_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
