"""Email service using Resend for order and payment notifications."""

import logging
from html import escape
from typing import Any

import resend

from src.core.config import get_settings
from src.core.money import format_currency

logger = logging.getLogger(__name__)

# Subject and lead sentence per order status
STATUS_MESSAGES: dict[str, tuple[str, str]] = {
    "processing": (
        "We're preparing your order {order_number}",
        "Your payment was received and your order is being prepared.",
    ),
    "shipped": (
        "Your order {order_number} has shipped",
        "Good news! Your order is on its way.",
    ),
    "delivered": (
        "Your order {order_number} was delivered",
        "Your order has been delivered. We hope you enjoy it.",
    ),
    "cancelled": (
        "Your order {order_number} was cancelled",
        "Your order has been cancelled. If you were charged, a refund will follow.",
    ),
    "refunded": (
        "Your order {order_number} was refunded",
        "A refund for your order has been issued.",
    ),
}


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.frontend_url = settings.frontend_url

    def order_url(self, order_id: str) -> str:
        return f"{self.frontend_url}/orders/{order_id}"

    def _render(self, title: str, paragraphs: list[str], link_label: str, link_url: str) -> tuple[str, str]:
        body = "\n".join(
            f'        <p style="font-size: 16px; margin-bottom: 16px;">{escape(p)}</p>' for p in paragraphs
        )
        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{escape(title)}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-size: 22px;">{escape(title)}</h1>
    <div style="background: #f9fafb; padding: 25px; border-radius: 10px; margin: 20px 0;">
{body}
    </div>
    <div style="text-align: center; margin: 30px 0;">
        <a href="{escape(link_url)}" style="background: #111827; color: white; padding: 12px 28px; text-decoration: none; border-radius: 6px; font-weight: 600;">
            {escape(link_label)}
        </a>
    </div>
</body>
</html>
"""
        text_content = "\n\n".join([title, *paragraphs, f"{link_label}: {link_url}"])
        return html_content, text_content

    async def _send(self, to_email: str, subject: str, html_content: str, text_content: str, kind: str) -> dict[str, Any]:
        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [to_email],
                "subject": subject,
                "html": html_content,
                "text": text_content,
            })

            logger.info("%s email sent to %s, id: %s", kind, to_email, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send %s email to %s: %s", kind, to_email, str(e))
            return {"success": False, "error": str(e)}

    async def send_order_status_email(
        self,
        order: dict[str, Any],
        status: str,
        note: str | None = None,
    ) -> dict[str, Any]:
        """Send the notification for an order reaching a new status.

        Args:
            order: Order row (email, order_number, id, amounts).
            status: New order status; statuses without a template are skipped.
            note: Optional admin note shown to the customer.

        Returns:
            dict: {"success": bool, ...}. Skipped statuses report skipped=True.
        """
        template = STATUS_MESSAGES.get(status)
        if template is None:
            return {"success": True, "skipped": True}

        subject_template, lead = template
        subject = subject_template.format(order_number=order["order_number"])
        paragraphs = [lead, f"Order number: {order['order_number']}"]
        if status == "shipped" and order.get("shipped_at"):
            paragraphs.append(f"Shipped on: {order['shipped_at'][:10]}")
        if status == "delivered" and order.get("delivered_at"):
            paragraphs.append(f"Delivered on: {order['delivered_at'][:10]}")
        if status in ("cancelled", "refunded"):
            paragraphs.append(f"Order total: {format_currency(order['total_amount'], order.get('currency', 'THB'))}")
        if note:
            paragraphs.append(note)

        html_content, text_content = self._render(subject, paragraphs, "View your order", self.order_url(order["id"]))
        return await self._send(order["email"], subject, html_content, text_content, f"order {status}")

    async def send_payment_confirmation_email(self, order: dict[str, Any], payment: dict[str, Any]) -> dict[str, Any]:
        """Send the payment receipt for a completed payment."""
        subject = f"Payment received for order {order['order_number']}"
        paragraphs = [
            "Thank you! We received your payment.",
            f"Order number: {order['order_number']}",
            f"Amount paid: {format_currency(payment['amount'], payment.get('currency', 'THB'))}",
        ]
        if payment.get("completed_at"):
            paragraphs.append(f"Paid on: {payment['completed_at'][:10]}")

        html_content, text_content = self._render(subject, paragraphs, "View your order", self.order_url(order["id"]))
        return await self._send(order["email"], subject, html_content, text_content, "payment confirmation")

    async def send_payment_failed_email(
        self,
        order: dict[str, Any],
        payment: dict[str, Any],
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Tell the customer a payment attempt failed and link to retry."""
        subject = f"Payment failed for order {order['order_number']}"
        paragraphs = [
            "Unfortunately your payment could not be completed.",
            f"Order number: {order['order_number']}",
            f"Amount: {format_currency(payment['amount'], payment.get('currency', 'THB'))}",
        ]
        if reason:
            paragraphs.append(f"Reason: {reason}")
        paragraphs.append("You can try again from your order page.")

        retry_url = f"{self.order_url(order['id'])}/pay"
        html_content, text_content = self._render(subject, paragraphs, "Retry payment", retry_url)
        return await self._send(order["email"], subject, html_content, text_content, "payment failed")
