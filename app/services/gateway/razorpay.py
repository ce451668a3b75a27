import logging

import httpx

from app.core.exceptions import GatewayNotConfiguredError, PaymentGatewayError
from app.core.security import hmac_sha256_hex, signatures_match
from app.services.gateway.base import PaymentGateway

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class RazorpayGateway(PaymentGateway):
    """
    Razorpay Orders API client.

    Built once by the application lifespan and injected into the payment
    services; credentials are checked here rather than on first use.
    """

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = "https://api.razorpay.com",
        currency: str = "INR",
        minor_unit_factor: int = 100,
    ):
        if not key_id or not key_secret or not webhook_secret:
            raise GatewayNotConfiguredError()

        self.key_id = key_id
        self.currency = currency
        self.minor_unit_factor = minor_unit_factor
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=DEFAULT_TIMEOUT,
        )
        self._auth = httpx.BasicAuth(key_id, key_secret)

    @classmethod
    def from_settings(cls, settings, http_client: httpx.AsyncClient | None = None) -> "RazorpayGateway":
        return cls(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            webhook_secret=settings.razorpay_webhook_secret,
            http_client=http_client,
            base_url=settings.razorpay_api_base,
            currency=settings.payment_currency,
            minor_unit_factor=settings.currency_minor_unit,
        )

    async def create_order(self, *, amount: int, receipt: str, notes: dict | None = None) -> str:
        payload = {
            "amount": amount,
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes or {},
        }

        try:
            response = await self._client.post("/v1/orders", json=payload, auth=self._auth)
        except httpx.HTTPError as e:
            logger.error(f"Razorpay unreachable: {e}")
            raise PaymentGatewayError() from e

        if response.status_code >= 400:
            logger.error(
                f"Razorpay order creation rejected: {response.status_code} {response.text}"
            )
            raise PaymentGatewayError()

        body = response.json()
        provider_order_id = body.get("id")
        if not provider_order_id:
            raise PaymentGatewayError("Payment provider returned no order id")

        return provider_order_id

    def verify_payment_signature(self, *, razorpay_order_id: str, payment_id: str, signature: str) -> bool:
        expected = hmac_sha256_hex(self._key_secret, f"{razorpay_order_id}|{payment_id}")
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, *, body: bytes, signature: str | None) -> bool:
        expected = hmac_sha256_hex(self._webhook_secret, body)
        return signatures_match(expected, signature)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
