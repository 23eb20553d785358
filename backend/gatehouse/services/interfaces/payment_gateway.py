"""
Payment gateway interface.
Lets checkout and confirmation run against a real provider or a local mock.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from gatehouse.core.signing import hmac_hex, signatures_match


@dataclass
class GatewayIntent:
    id: str
    amount: int
    currency: str
    receipt: str
    provider: str
    notes: dict = field(default_factory=dict)
    status: str = "created"


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations:
    - MockGateway: in-process intents, used in development and tests
    - RazorpayGateway: Razorpay Orders API over HTTP

    Signature checks live on the base class. Both use HMAC-SHA256 and a
    constant-time comparison:
    - client confirmation: key_secret over "gateway_order_id|payment_id"
    - webhook: webhook_secret over the raw request body bytes
    """

    provider: str = "abstract"

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str):
        self.key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict] = None,
    ) -> GatewayIntent:
        """
        Create a provider-side order for `amount` minor units.

        Raises:
            PaymentGatewayError if the provider cannot be reached or refuses.
        """

    async def close(self) -> None:
        """Release network resources, if any."""

    def sign_payment(self, gateway_order_id: str, payment_id: str) -> str:
        return hmac_hex(self._key_secret, f"{gateway_order_id}|{payment_id}")

    def sign_webhook(self, body: bytes) -> str:
        return hmac_hex(self._webhook_secret, body)

    def verify_payment_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        return signatures_match(self.sign_payment(gateway_order_id, payment_id), signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        return signatures_match(self.sign_webhook(body), signature)
