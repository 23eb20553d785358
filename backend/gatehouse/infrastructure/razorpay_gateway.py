"""
Razorpay gateway adapter.

Talks to the Orders API with an async httpx client (basic auth with the key
id and secret). Signature verification is inherited from PaymentGateway and
follows Razorpay's documented HMAC-SHA256 scheme.
"""

from typing import Optional

import httpx

from gatehouse.core.errors import PaymentGatewayError
from gatehouse.core.logging import get_logger
from gatehouse.services.interfaces.payment_gateway import GatewayIntent, PaymentGateway

logger = get_logger(__name__)


class RazorpayGateway(PaymentGateway):
    provider = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(key_id, key_secret, webhook_secret)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    async def create_intent(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict] = None,
    ) -> GatewayIntent:
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt[:40],
            "notes": notes or {},
        }
        try:
            response = await self._client.post("/orders", json=payload)
        except httpx.HTTPError as e:
            logger.error("razorpay_request_failed", receipt=receipt, error=str(e))
            raise PaymentGatewayError() from e

        if response.status_code >= 400:
            logger.error(
                "razorpay_order_rejected",
                receipt=receipt,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PaymentGatewayError()

        data = response.json()
        logger.info("razorpay_order_created", intent_id=data["id"], amount=amount, receipt=receipt)
        return GatewayIntent(
            id=data["id"],
            amount=int(data.get("amount", amount)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
            provider=self.provider,
            notes=data.get("notes") or {},
            status=data.get("status", "created"),
        )

    async def close(self) -> None:
        await self._client.aclose()
