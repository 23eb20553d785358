"""
In-process payment gateway.

Creates intents without any network call. Signatures use the same HMAC
scheme as the real provider, so confirmation and webhook code paths are
exercised unchanged. `fail_next` lets tests simulate an outage.
"""

import uuid
from typing import Optional

from gatehouse.core.errors import PaymentGatewayError
from gatehouse.core.logging import get_logger
from gatehouse.services.interfaces.payment_gateway import GatewayIntent, PaymentGateway

logger = get_logger(__name__)


class MockGateway(PaymentGateway):
    provider = "mock"

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str):
        super().__init__(key_id, key_secret, webhook_secret)
        self.intents: dict[str, GatewayIntent] = {}
        self.fail_next = 0

    async def create_intent(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict] = None,
    ) -> GatewayIntent:
        if self.fail_next > 0:
            self.fail_next -= 1
            logger.warning("mock_gateway_unavailable", receipt=receipt)
            raise PaymentGatewayError()

        intent = GatewayIntent(
            id=f"order_mock_{uuid.uuid4().hex[:16]}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            provider=self.provider,
            notes=dict(notes or {}),
        )
        self.intents[intent.id] = intent
        logger.info("mock_intent_created", intent_id=intent.id, amount=amount, receipt=receipt)
        return intent
