"""PromptPay QR payload generation and webhook signatures.

Payloads follow the EMVCo merchant-presented QR layout used by Thai
PromptPay: ID/length/value fields terminated by a CRC16-CCITT checksum.
"""

import hashlib
import hmac
import logging
import re
from functools import lru_cache

from src.core.config import get_settings

logger = logging.getLogger(__name__)

PROMPTPAY_AID = "A000000677010111"
COUNTRY_CODE_TH = "TH"
CURRENCY_THB = "764"

# Merchant proxy sub-tags inside tag 29
PROXY_PHONE = "01"
PROXY_NATIONAL_ID = "02"
PROXY_EWALLET = "03"


def _field(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def crc16_ccitt(data: str) -> str:
    """CRC16-CCITT (poly 0x1021, init 0xFFFF) as four uppercase hex digits."""
    crc = 0xFFFF
    for byte in data.encode("ascii"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def _proxy_field(proxy_id: str) -> str:
    digits = re.sub(r"\D", "", proxy_id)
    if len(digits) >= 15:
        return _field(PROXY_EWALLET, digits)
    if len(digits) >= 13:
        return _field(PROXY_NATIONAL_ID, digits)
    # Phone: drop the trunk zero, add country code 66, left-pad to 13
    phone = re.sub(r"^0", "66", digits)
    return _field(PROXY_PHONE, phone.rjust(13, "0")[-13:])


def _format_amount(amount_minor: int) -> str:
    whole, fraction = divmod(amount_minor, 100)
    return f"{whole}.{fraction:02d}"


def build_payload(proxy_id: str, amount_minor: int | None = None) -> str:
    """Build a PromptPay EMV payload.

    Args:
        proxy_id: Phone number, 13-digit national id or 15-digit e-wallet id.
        amount_minor: Amount in satang; None produces a reusable static QR.

    Returns:
        str: Payload string to render as a QR code.
    """
    fields = [
        _field("00", "01"),
        _field("01", "12" if amount_minor is not None else "11"),
        _field("29", _field("00", PROMPTPAY_AID) + _proxy_field(proxy_id)),
        _field("58", COUNTRY_CODE_TH),
        _field("53", CURRENCY_THB),
    ]
    if amount_minor is not None:
        fields.append(_field("54", _format_amount(amount_minor)))

    data = "".join(fields) + "6304"
    return data + crc16_ccitt(data)


def sign_payload(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of a raw webhook body."""
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


class PromptPayClient:
    """Generates PromptPay payloads and verifies webhook signatures."""

    def __init__(self, merchant_id: str, webhook_secret: str) -> None:
        self.merchant_id = merchant_id
        self.webhook_secret = webhook_secret

    def generate_payload(self, amount_minor: int, reference_id: str) -> str:
        """Payload for a dynamic QR of the given amount."""
        if amount_minor <= 0:
            raise ValueError("amount must be positive")
        payload = build_payload(self.merchant_id, amount_minor)
        logger.debug("Generated PromptPay payload for %s amount=%d", reference_id, amount_minor)
        return payload

    def sign(self, raw_body: bytes) -> str:
        return sign_payload(raw_body, self.webhook_secret)

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """Constant-time check of the X-Webhook-Signature header value."""
        if not signature or not self.webhook_secret:
            return False
        return hmac.compare_digest(self.sign(raw_body), signature.strip().lower())


@lru_cache
def get_promptpay_client() -> PromptPayClient:
    """Get cached PromptPay client configured from settings."""
    settings = get_settings()
    return PromptPayClient(settings.promptpay_merchant_id, settings.promptpay_webhook_secret)
