"""Payment service: payment attempts, gateway webhooks and settlement.

Webhook contract, shared by both gateways:
1. Verify the signature; reject without touching any row if it fails.
2. If a payment already carries this transaction id and is no longer
   pending, the event was processed before: return without side effects.
3. Resolve the payment by transaction id, else by the payment id echoed in
   the payload.
4. Store the transaction id and raw provider response, only while the
   payment is still pending.
5. Complete or fail the payment.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from src.api.middleware.error_handler import (
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
    WebhookSignatureError,
)
from src.core.card_gateway import CardGatewayClient, get_card_gateway_client
from src.core.config import get_settings
from src.core.notifications import NotificationDispatcher, get_notification_dispatcher
from src.core.promptpay import PromptPayClient, get_promptpay_client
from src.models.order import PaymentEvent
from src.models.payment import PaymentMethod, PaymentProvider
from src.repositories.base import OrderRepository, PaymentRepository
from src.repositories.factory import get_store
from src.schemas.payment import CardWebhookPayload, PromptPayWebhookPayload
from src.services.email_service import EmailService
from src.services.order_assembler import utc_now_iso
from src.services.order_service import OrderService
from src.services.order_state_machine import payment_transition_rejection_reason

logger = logging.getLogger(__name__)

PROMPTPAY_SUCCESS_STATUSES = frozenset({"success", "completed"})
PROMPTPAY_FAILURE_STATUSES = frozenset({"failed"})
CARD_SUCCESS_STATUSES = frozenset({"000", "success", "completed"})

WebhookOutcome = Literal["completed", "failed", "duplicate", "ignored"]


def mask_card_number(card_number: str | None) -> str | None:
    """Keep only the last four digits of a card number."""
    if not card_number:
        return None
    digits = "".join(ch for ch in card_number if ch.isdigit())
    return digits[-4:] or None


class PaymentService:
    """Service for payment attempts and their settlement."""

    def __init__(
        self,
        store: PaymentRepository | None = None,
        orders: OrderRepository | None = None,
        order_service: OrderService | None = None,
        promptpay_client: PromptPayClient | None = None,
        card_client: CardGatewayClient | None = None,
        email_service: EmailService | None = None,
        notifications: NotificationDispatcher | None = None,
    ) -> None:
        self.store = store or get_store()
        self.orders = orders or self.store
        self.order_service = order_service or OrderService(self.orders)
        self.promptpay_client = promptpay_client or get_promptpay_client()
        self.card_client = card_client or get_card_gateway_client()
        self.email_service = email_service or EmailService()
        self.notifications = notifications or get_notification_dispatcher()

    # Payment attempts

    def _validate_payable_order(self, order_id: str, amount: int) -> dict[str, Any]:
        if amount <= 0:
            raise ValidationError.for_field(["amount"], "Payment amount must be greater than zero")

        order = self.orders.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        if order["payment_status"] == "paid":
            raise ValidationError.for_field(["order_id"], "Order is already paid")

        if order["status"] in ("cancelled", "refunded"):
            raise ValidationError.for_field(["order_id"], f"Order is {order['status']}")

        if amount != order["total_amount"]:
            raise ValidationError.for_field(["amount"], "Payment amount does not match order total")

        return order

    def _new_payment(
        self,
        order: dict[str, Any],
        method: PaymentMethod,
        provider: PaymentProvider,
        amount: int,
    ) -> dict[str, Any]:
        now = utc_now_iso()
        row = {
            "id": str(uuid4()),
            "order_id": order["id"],
            "payment_method": method,
            "payment_provider": provider,
            "amount": amount,
            "currency": order.get("currency") or get_settings().currency,
            "status": "pending",
            "transaction_id": None,
            "card_last4": None,
            "card_brand": None,
            "provider_response": None,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
            "failed_at": None,
        }
        return self.store.create_payment(row)

    async def create_promptpay_payment(self, order_id: str, amount: int) -> dict[str, Any]:
        """Create a pending PromptPay payment and its QR payload.

        Returns:
            dict: payment_id, qr_payload, amount, currency, expires_at.

        Raises:
            ValidationError: Bad amount, order already paid or closed.
            NotFoundError: Order does not exist.
            PaymentGatewayError: PromptPay is not configured.
        """
        settings = get_settings()
        if not settings.is_promptpay_configured:
            raise PaymentGatewayError("PromptPay is not configured")

        order = self._validate_payable_order(order_id, amount)
        payment = self._new_payment(order, "promptpay", "promptpay", amount)
        qr_payload = self.promptpay_client.generate_payload(amount, payment["id"])
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.payment_qr_expiry_minutes)

        logger.info("PromptPay payment %s created for order %s amount=%d", payment["id"], order_id, amount)
        return {
            "payment_id": payment["id"],
            "qr_payload": qr_payload,
            "amount": amount,
            "currency": payment["currency"],
            "expires_at": expires_at,
        }

    async def initiate_card_payment(self, order_id: str, amount: int, return_url: str) -> dict[str, Any]:
        """Create a pending card payment and a hosted payment page session.

        Returns:
            dict: payment_id, payment_url, session_id.
        """
        if not get_settings().is_card_gateway_configured:
            raise PaymentGatewayError("Card payments are not configured")

        order = self._validate_payable_order(order_id, amount)
        payment = self._new_payment(order, "credit_card", "card_gateway", amount)

        session = await self.card_client.create_payment_session(
            reference_id=payment["id"],
            amount_minor=amount,
            currency=payment["currency"],
            return_url=return_url,
        )
        self.store.update_payment(
            payment["id"],
            {"provider_response": {"sessionId": session.session_id}, "updated_at": utc_now_iso()},
        )

        logger.info("Card payment %s initiated for order %s session=%s", payment["id"], order_id, session.session_id)
        return {
            "payment_id": payment["id"],
            "payment_url": session.payment_url,
            "session_id": session.session_id,
        }

    def _require_payment(self, payment_id: str) -> dict[str, Any]:
        payment = self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    async def get_payment_status(self, payment_id: str) -> dict[str, Any]:
        """Latest stored state of a payment. May lag an unprocessed webhook."""
        payment = self._require_payment(payment_id)
        return {
            "payment_id": payment["id"],
            "order_id": payment["order_id"],
            "status": payment["status"],
            "payment_method": payment["payment_method"],
            "amount": payment["amount"],
            "currency": payment["currency"],
            "transaction_id": payment.get("transaction_id"),
            "created_at": payment["created_at"],
            "completed_at": payment.get("completed_at"),
            "failed_at": payment.get("failed_at"),
        }

    async def list_order_payments(self, order_id: str) -> list[dict[str, Any]]:
        """All payment attempts for an order, oldest first."""
        if self.orders.get_order(order_id) is None:
            raise NotFoundError(f"Order {order_id} not found")
        return [await self.get_payment_status(p["id"]) for p in self.store.list_payments_for_order(order_id)]

    async def handle_card_return(self, params: dict[str, Any]) -> dict[str, Any]:
        """Customer came back from the hosted page. Reports state, never changes it."""
        payment_id = params.get("order_id")
        if not payment_id:
            raise ValidationError.for_field(["order_id"], "order_id is required")

        current = await self.get_payment_status(payment_id)
        logger.info(
            "Card return for payment %s: reported=%s stored=%s",
            payment_id,
            params.get("payment_status"),
            current["status"],
        )
        return current

    # Webhooks

    def _resolve_for_webhook(self, transaction_id: str, reference_id: str) -> dict[str, Any] | None:
        """Steps 2-3: idempotency check, then resolution. None means already processed."""
        existing = self.store.get_payment_by_transaction_id(transaction_id)
        if existing and existing["status"] != "pending":
            logger.info(
                "Webhook already processed for transaction %s (payment %s is %s)",
                transaction_id,
                existing["id"],
                existing["status"],
            )
            return None

        payment = existing or self.store.get_payment(reference_id)
        if payment is None:
            raise NotFoundError(f"Payment {reference_id} not found")
        return payment

    def _record_provider_response(self, payment_id: str, transaction_id: str, values: dict[str, Any]) -> bool:
        """Step 4, guarded on the payment still being pending.

        Returns:
            bool: False if another notification settled the payment after it
                was read; that event owns the transaction id.
        """
        try:
            with self.store.unit_of_work() as uow:
                uow.update_payment(
                    payment_id,
                    {**values, "transaction_id": transaction_id, "updated_at": utc_now_iso()},
                    expected_status="pending",
                )
        except ConflictError:
            logger.info(
                "Payment %s settled concurrently, treating transaction %s as processed",
                payment_id,
                transaction_id,
            )
            return False
        return True

    async def handle_promptpay_webhook(self, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        """Process a PromptPay notification.

        Args:
            raw_body: Request body exactly as received; the HMAC covers these bytes.
            signature: X-Webhook-Signature header value.

        Raises:
            WebhookSignatureError: Signature missing or wrong.
            ValidationError: Body is not a valid notification.
            NotFoundError: No payment matches the notification.
        """
        if not self.promptpay_client.verify_signature(raw_body, signature):
            logger.warning("Security: rejected PromptPay webhook with invalid signature")
            raise WebhookSignatureError()

        try:
            payload = PromptPayWebhookPayload.model_validate(json.loads(raw_body))
        except (ValueError, PydanticValidationError) as e:
            raise ValidationError("Invalid PromptPay webhook payload") from e

        payment = self._resolve_for_webhook(payload.transactionId, payload.referenceId)
        if payment is None:
            return "duplicate"

        if payment["status"] != "pending":
            logger.warning(
                "PromptPay transaction %s targets payment %s in status %s, ignoring",
                payload.transactionId,
                payment["id"],
                payment["status"],
            )
            return "ignored"

        if not self._record_provider_response(
            payment["id"], payload.transactionId, {"provider_response": payload.model_dump()}
        ):
            return "duplicate"

        status = payload.status.lower()
        if status in PROMPTPAY_SUCCESS_STATUSES:
            await self.complete_payment(payment["id"])
            outcome: WebhookOutcome = "completed"
        elif status in PROMPTPAY_FAILURE_STATUSES:
            await self.fail_payment(payment["id"], "Payment failed via PromptPay")
            outcome = "failed"
        else:
            logger.info("PromptPay status %s for payment %s needs no action", payload.status, payment["id"])
            outcome = "ignored"

        logger.info("PromptPay webhook processed: payment=%s transaction=%s", payment["id"], payload.transactionId)
        return outcome

    async def handle_card_webhook(self, payload: dict[str, Any]) -> WebhookOutcome:
        """Process a card gateway notification.

        The hash is checked against the fields exactly as received, before
        any parsing.
        """
        if not self.card_client.verify_webhook_signature(payload):
            logger.warning("Security: rejected card webhook with invalid signature")
            raise WebhookSignatureError()

        try:
            notification = CardWebhookPayload.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError("Invalid card webhook payload") from e

        payment = self._resolve_for_webhook(notification.transaction_ref, notification.order_id)
        if payment is None:
            return "duplicate"

        if payment["status"] != "pending":
            logger.warning(
                "Card transaction %s targets payment %s in status %s, ignoring",
                notification.transaction_ref,
                payment["id"],
                payment["status"],
            )
            return "ignored"

        card_last4 = mask_card_number(notification.card_number)
        card_brand = notification.card_brand or None
        recorded = self._record_provider_response(
            payment["id"],
            notification.transaction_ref,
            {
                "card_last4": card_last4,
                "card_brand": card_brand,
                "provider_response": {
                    "version": notification.version,
                    "merchant_id": notification.merchant_id,
                    "payment_status": notification.payment_status,
                    "amount": notification.amount,
                    "currency": notification.currency,
                    "transaction_ref": notification.transaction_ref,
                    "cardLast4": card_last4,
                    "cardBrand": card_brand,
                    "processedAt": utc_now_iso(),
                },
            },
        )
        if not recorded:
            return "duplicate"

        if notification.payment_status.lower() in CARD_SUCCESS_STATUSES:
            await self.complete_payment(payment["id"])
            outcome: WebhookOutcome = "completed"
        else:
            await self.fail_payment(payment["id"], f"Payment failed with status: {notification.payment_status}")
            outcome = "failed"

        logger.info("Card webhook processed: payment=%s transaction=%s", payment["id"], notification.transaction_ref)
        return outcome

    # Settlement

    async def _notify_order(self, event: PaymentEvent) -> None:
        """Feed a payment outcome to the order state machine. Errors are logged only."""
        try:
            await self.order_service.handle_payment_event(event)
        except Exception as e:
            logger.error("Failed to apply %s to order %s: %s", event["type"], event["order_id"], str(e))

    def _settle(
        self,
        payment: dict[str, Any],
        payment_values: dict[str, Any],
        order_values: dict[str, Any],
        retry_failed: bool = False,
    ) -> None:
        """Payment and order payment fields in one unit of work, guarded on the payment status read.

        With retry_failed, a failed payment first goes back to pending in the
        same unit, so nothing is visible unless the whole settlement commits.
        """
        expected_status = payment["status"]
        with self.store.unit_of_work() as uow:
            if retry_failed:
                uow.update_payment(
                    payment["id"],
                    {"status": "pending", "updated_at": payment_values["updated_at"]},
                    expected_status="failed",
                )
                expected_status = "pending"
            uow.update_payment(payment["id"], payment_values, expected_status=expected_status)
            if order_values:
                uow.update_order(payment["order_id"], order_values)

    async def complete_payment(self, payment_id: str, extra: dict[str, Any] | None = None) -> bool:
        """Mark a pending payment completed and its order paid.

        Afterwards the order receives payment_completed and the customer a
        confirmation email.

        Returns:
            bool: False if the payment was already completed.

        Raises:
            ConflictError: The transition is not allowed, or a concurrent
                writer settled the payment first.
        """
        payment = self._require_payment(payment_id)
        if payment["status"] == "completed":
            logger.info("Payment %s already completed", payment_id)
            return False

        reason = payment_transition_rejection_reason(payment["status"], "completed")
        if reason is not None:
            raise ConflictError(reason, error_type="invalid_payment_transition")

        await self._complete(payment, extra)
        return True

    async def _complete(
        self,
        payment: dict[str, Any],
        extra: dict[str, Any] | None = None,
        retry_failed: bool = False,
    ) -> None:
        payment_id = payment["id"]
        now = utc_now_iso()
        payment_values: dict[str, Any] = {"status": "completed", "completed_at": now, "updated_at": now}
        if extra:
            payment_values.update(extra)
        self._settle(
            payment,
            payment_values,
            {"payment_status": "paid", "paid_at": now, "updated_at": now},
            retry_failed=retry_failed,
        )
        logger.info("Payment %s completed for order %s", payment_id, payment["order_id"])

        await self._notify_order(
            {
                "type": "payment_completed",
                "order_id": payment["order_id"],
                "timestamp": now,
                "metadata": {"paymentId": payment_id, "transactionId": payment.get("transaction_id")},
            }
        )

        order = self.orders.get_order(payment["order_id"])
        if order is not None:
            self.notifications.dispatch(
                self.email_service.send_payment_confirmation_email(order, {**payment, **payment_values}),
                f"payment {payment_id} confirmation email",
            )

    async def fail_payment(self, payment_id: str, reason: str) -> bool:
        """Mark a pending payment failed. The order status is left alone.

        The order's payment status becomes failed unless another attempt has
        already paid it.

        Returns:
            bool: False if the payment was already failed.
        """
        payment = self._require_payment(payment_id)
        if payment["status"] == "failed":
            logger.info("Payment %s already failed", payment_id)
            return False

        rejection = payment_transition_rejection_reason(payment["status"], "failed")
        if rejection is not None:
            raise ConflictError(rejection, error_type="invalid_payment_transition")

        now = utc_now_iso()
        payment_values = {
            "status": "failed",
            "failed_at": now,
            "updated_at": now,
            "provider_response": {**(payment.get("provider_response") or {}), "failureReason": reason},
        }
        order = self.orders.get_order(payment["order_id"])
        order_values: dict[str, Any] = {}
        if order is not None and order["payment_status"] != "paid":
            order_values = {"payment_status": "failed", "updated_at": now}

        self._settle(payment, payment_values, order_values)
        logger.info("Payment %s failed for order %s: %s", payment_id, payment["order_id"], reason)

        await self._notify_order(
            {
                "type": "payment_failed",
                "order_id": payment["order_id"],
                "timestamp": now,
                "metadata": {"paymentId": payment_id, "reason": reason},
            }
        )

        if order is not None:
            self.notifications.dispatch(
                self.email_service.send_payment_failed_email(order, {**payment, **payment_values}, reason),
                f"payment {payment_id} failure email",
            )
        return True

    async def process_refund(self, payment_id: str, reason: str, admin_id: str | None = None) -> dict[str, Any]:
        """Refund a completed payment and move its order to refunded.

        Raises:
            NotFoundError: Payment does not exist.
            ValidationError: Payment is not completed.
        """
        payment = self._require_payment(payment_id)
        rejection = payment_transition_rejection_reason(payment["status"], "refunded")
        if rejection is not None:
            raise ValidationError.for_field(["payment_id"], rejection)

        now = utc_now_iso()
        provider_response = {
            **(payment.get("provider_response") or {}),
            "refundedAt": now,
            "refundReason": reason,
            "refundedBy": admin_id,
        }
        self._settle(
            payment,
            {"status": "refunded", "provider_response": provider_response, "updated_at": now},
            {"payment_status": "refunded", "updated_at": now},
        )
        logger.info("Payment %s refunded by %s: %s", payment_id, admin_id or "system", reason)

        await self._notify_order(
            {
                "type": "refund_processed",
                "order_id": payment["order_id"],
                "timestamp": now,
                "metadata": {"paymentId": payment_id, "reason": reason, "adminId": admin_id},
            }
        )
        return {"payment_id": payment_id, "status": "refunded"}

    async def manually_verify_payment(self, payment_id: str, admin_id: str, note: str | None = None) -> dict[str, Any]:
        """Admin override: complete a payment confirmed out of band.

        A failed payment is treated as retried (failed -> pending) and then
        completed. The verifier and note are kept on provider_response.

        Raises:
            NotFoundError: Payment does not exist.
            ValidationError: Payment is already completed or refunded.
        """
        payment = self._require_payment(payment_id)
        if payment["status"] == "completed":
            raise ValidationError.for_field(["payment_id"], "Payment is already completed")
        if payment["status"] == "refunded":
            raise ValidationError.for_field(["payment_id"], "Cannot verify a refunded payment")

        now = utc_now_iso()
        audit = {
            **(payment.get("provider_response") or {}),
            "manualVerification": True,
            "verifiedBy": admin_id,
            "verificationNote": note,
            "verifiedAt": now,
        }

        # failed -> pending -> completed in one unit; history stays legal
        await self._complete(
            payment,
            extra={"provider_response": audit},
            retry_failed=payment["status"] == "failed",
        )
        logger.info("Payment %s manually verified by %s", payment_id, admin_id)
        return {"payment_id": payment_id, "status": "completed"}
