"""Razorpay adapter: order creation, payment lookup and signature primitives.

Talks to the Razorpay REST API with ``httpx``. When no credentials are
configured a :class:`MockGateway` stands in so local checkouts still work.
"""

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import httpx

from server import config
from server.services.errors import GatewayProviderError, GatewayTransportError
from server.services.signatures import payment_signature

# Secret used to sign mock checkouts when Razorpay is not configured
MOCK_KEY_SECRET = "test_secret"


@dataclass
class GatewayOrder:
    id: str
    amount: int
    currency: str
    receipt: str
    status: str = "created"


@dataclass
class GatewayPaymentDetails:
    id: str
    method: Optional[str] = None
    status: Optional[str] = None
    order_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: Dict[str, Any]) -> "GatewayPaymentDetails":
        card = entity.get("card") or {}
        return cls(
            id=entity.get("id"),
            method=entity.get("method"),
            status=entity.get("status"),
            order_id=entity.get("order_id"),
            card_brand=card.get("network"),
            card_last4=card.get("last4"),
        )


class RazorpayGateway:
    provider = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = config.RAZORPAY_API_URL,
        timeout: float = config.GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def payment_signature(self, order_id: str, payment_id: str) -> str:
        return payment_signature(self.key_secret, order_id, payment_id)

    async def create_order(
        self, amount_minor: int, currency: str, receipt: str, notes: Dict[str, Any]
    ) -> GatewayOrder:
        body = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            # Razorpay only stores string note values
            "notes": {key: str(value) for key, value in notes.items()},
        }
        data = await self._request("POST", "/orders", json=body)
        return GatewayOrder(
            id=data["id"],
            amount=data.get("amount", amount_minor),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
            status=data.get("status", "created"),
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPaymentDetails:
        data = await self._request("GET", f"/payments/{payment_id}", params={"expand[]": "card"})
        return GatewayPaymentDetails.from_entity(data)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logging.exception("Razorpay %s %s failed", method, path)
            raise GatewayTransportError(f"Payment gateway unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            error = data.get("error") if isinstance(data, dict) else None
            error = error if isinstance(error, dict) else {}
            description = error.get("description") or response.reason_phrase or "Unknown error"
            raise GatewayProviderError(
                f"Payment gateway rejected the request: {description}",
                provider_code=error.get("code"),
                http_status=response.status_code,
            )
        if not isinstance(data, dict):
            raise GatewayTransportError(
                f"Payment gateway returned an unreadable response ({response.status_code})"
            )
        return data


class MockGateway:
    """Offline stand-in mirroring :class:`RazorpayGateway`'s interface."""

    provider = "razorpay"

    def __init__(self, key_id: str = "rzp_test_mock", key_secret: str = MOCK_KEY_SECRET):
        self.key_id = key_id
        self.key_secret = key_secret

    def payment_signature(self, order_id: str, payment_id: str) -> str:
        return payment_signature(self.key_secret, order_id, payment_id)

    async def create_order(
        self, amount_minor: int, currency: str, receipt: str, notes: Dict[str, Any]
    ) -> GatewayOrder:
        order = GatewayOrder(
            id=f"order_mock_{int(time.time() * 1000)}",
            amount=amount_minor,
            currency=currency,
            receipt=receipt,
        )
        logging.info("Mock Razorpay order created: %s (%s %s)", order.id, amount_minor, currency)
        return order

    async def fetch_payment(self, payment_id: str) -> GatewayPaymentDetails:
        return GatewayPaymentDetails(id=payment_id, method="card", status="captured")


@lru_cache()
def get_gateway():
    if not config.RAZORPAY_KEY_ID or not config.RAZORPAY_KEY_SECRET:
        logging.warning(
            "Razorpay credentials are not configured (set RAZORPAY_KEY_ID and "
            "RAZORPAY_KEY_SECRET); using the mock gateway"
        )
        return MockGateway()
    return RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)
