"""Webhook API routes for payment provider notifications."""

import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Request, status

from src.api.deps import PaymentServiceDep
from src.api.middleware.error_handler import ValidationError, WebhookSignatureError
from src.services.order_assembler import utc_now_iso
from src.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

PROCESSING_FAILED = {"received": True, "error": "Processing failed"}


def _record_dead_letter(service: PaymentService, provider: str, raw_body: bytes, error: Exception) -> None:
    """Keep a failed notification for replay. Never raises."""
    try:
        payload: Any = json.loads(raw_body)
    except ValueError:
        payload = None

    try:
        service.store.record_dead_letter(
            {
                "id": str(uuid4()),
                "provider": provider,
                "payload": payload if isinstance(payload, dict) else None,
                "raw_body": raw_body.decode("utf-8", errors="replace"),
                "error": str(error),
                "created_at": utc_now_iso(),
            }
        )
    except Exception as e:
        logger.error("Failed to record %s webhook dead letter: %s", provider, str(e))


@router.post(
    "/promptpay",
    status_code=status.HTTP_200_OK,
    summary="Handle PromptPay webhooks",
    description="Receives PromptPay payment notifications. The X-Webhook-Signature header must carry the body HMAC.",
)
async def promptpay_webhook(request: Request, service: PaymentServiceDep) -> dict[str, Any]:
    """Handle a PromptPay notification.

    Always answers 200 so the provider does not retry indefinitely. A
    processing failure is reported in the body and kept as a dead letter.

    Args:
        request: FastAPI request object for reading raw body and headers.

    Returns:
        dict: Acknowledgment, with an error marker if processing failed.
    """
    # Signature covers the raw bytes
    raw_body = await request.body()
    signature = request.headers.get("x-webhook-signature")

    try:
        outcome = await service.handle_promptpay_webhook(raw_body, signature)
    except WebhookSignatureError:
        return PROCESSING_FAILED
    except Exception as e:
        logger.error("PromptPay webhook processing failed: %s", str(e))
        _record_dead_letter(service, "promptpay", raw_body, e)
        return PROCESSING_FAILED

    logger.info("PromptPay webhook acknowledged: %s", outcome)
    return {"received": True}


@router.post(
    "/card",
    status_code=status.HTTP_200_OK,
    summary="Handle card gateway webhooks",
    description="Receives card gateway payment notifications. The hash_value field must match the payload.",
)
async def card_webhook(request: Request, service: PaymentServiceDep) -> dict[str, Any]:
    """Handle a card gateway notification.

    Same acknowledgment contract as the PromptPay endpoint.
    """
    raw_body = await request.body()

    try:
        payload = json.loads(raw_body)
        if not isinstance(payload, dict):
            raise ValidationError("Card webhook body must be a JSON object")
        outcome = await service.handle_card_webhook(payload)
    except WebhookSignatureError:
        return PROCESSING_FAILED
    except Exception as e:
        logger.error("Card webhook processing failed: %s", str(e))
        _record_dead_letter(service, "card_gateway", raw_body, e)
        return PROCESSING_FAILED

    logger.info("Card webhook acknowledged: %s", outcome)
    return {"received": True}
