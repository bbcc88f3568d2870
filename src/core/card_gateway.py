"""Card payment gateway client (2C2P-style hosted payment page)."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.api.middleware.error_handler import PaymentGatewayError
from src.core.config import get_settings

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 10

API_VERSION = "1.0"


@dataclass(frozen=True)
class PaymentSession:
    payment_url: str
    session_id: str


def _hash_part(value: Any) -> str:
    return "" if value is None else str(value)


def format_amount(amount_minor: int) -> str:
    """Minor units to the gateway's two-decimal string: 16050 -> '160.50'."""
    whole, fraction = divmod(amount_minor, 100)
    return f"{whole}.{fraction:02d}"


class CardGatewayClient:
    """Creates hosted payment sessions and verifies webhook hashes."""

    def __init__(
        self,
        merchant_id: str,
        secret_key: str,
        api_url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.merchant_id = merchant_id
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def generate_hash(self, data: str) -> str:
        """HMAC-SHA256 hex digest keyed with the merchant secret."""
        return hmac.new(self.secret_key.encode(), data.encode(), hashlib.sha256).hexdigest()

    def webhook_hash(self, payload: dict[str, Any]) -> str:
        data = "".join(
            _hash_part(payload.get(key))
            for key in ("merchant_id", "order_id", "payment_status", "amount", "currency")
        )
        return self.generate_hash(data)

    def verify_webhook_signature(self, payload: dict[str, Any]) -> bool:
        """Check the payload's embedded hash_value in constant time."""
        signature = payload.get("hash_value")
        if not isinstance(signature, str) or not signature or not self.secret_key:
            return False
        return hmac.compare_digest(self.webhook_hash(payload), signature.strip().lower())

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _post_with_retry(self, path: str, body: dict[str, Any]) -> httpx.Response:
        """POST with retry on connection errors and timeouts."""
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            return await client.post(f"{self.api_url}{path}", json=body)

    async def create_payment_session(
        self,
        reference_id: str,
        amount_minor: int,
        currency: str,
        return_url: str,
    ) -> PaymentSession:
        """Create a hosted payment page session.

        Args:
            reference_id: Our payment id; the gateway echoes it back as order_id.
            amount_minor: Amount in minor units.
            currency: ISO currency code.
            return_url: Where the gateway sends the customer afterwards.

        Raises:
            PaymentGatewayError: On timeout, connection failure, non-2xx status
                or a response without payment_url and session_id.
        """
        amount = format_amount(amount_minor)
        body = {
            "version": API_VERSION,
            "merchant_id": self.merchant_id,
            "order_id": reference_id,
            "amount": amount,
            "currency": currency,
            "return_url": return_url,
            "hash_value": self.generate_hash(f"{self.merchant_id}{reference_id}{amount}{currency}"),
        }

        logger.info("Creating card payment session for %s amount=%s", reference_id, amount)

        try:
            response = await self._post_with_retry("/payment/create", body)
        except httpx.TimeoutException as e:
            logger.error("Card gateway timed out for %s: %s", reference_id, str(e))
            raise PaymentGatewayError("Payment gateway timeout. Please try again.") from e
        except httpx.TransportError as e:
            logger.error("Card gateway unreachable for %s: %s", reference_id, str(e))
            raise PaymentGatewayError("Unable to connect to payment gateway. Please try again.") from e

        if response.status_code >= 400:
            logger.error("Card gateway returned %d: %s", response.status_code, response.text)
            raise PaymentGatewayError(f"Payment gateway error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise PaymentGatewayError("Invalid response from payment gateway") from e

        if not isinstance(data, dict) or not data.get("payment_url") or not data.get("session_id"):
            logger.error("Invalid card gateway response for %s: %s", reference_id, data)
            raise PaymentGatewayError("Invalid response from payment gateway")

        logger.info("Card payment session %s created for %s", data["session_id"], reference_id)
        return PaymentSession(payment_url=data["payment_url"], session_id=data["session_id"])


@lru_cache
def get_card_gateway_client() -> CardGatewayClient:
    """Get cached card gateway client configured from settings."""
    settings = get_settings()
    return CardGatewayClient(
        merchant_id=settings.card_gateway_merchant_id,
        secret_key=settings.card_gateway_secret_key,
        api_url=settings.card_gateway_api_url,
        timeout_seconds=settings.card_gateway_timeout_seconds,
    )
