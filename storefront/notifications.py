"""
Order confirmation emails.

Delivery goes through an ``EmailChannel``. The default channel records
messages in memory; a real delivery adapter implements the same ``send``.
"""
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import List, Optional
from uuid import uuid4

import structlog

from storefront import config, ids

logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    pass


class EmailChannel(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> dict:
        """Send one message.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...


class RecordingEmailChannel(EmailChannel):
    """Keeps sent messages in memory."""

    def __init__(self):
        self.sent_emails: List[dict] = []
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Email delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(self, to: str, subject: str, body: str) -> dict:
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"email-{uuid4().hex[:12]}"
        self.sent_emails.append({"message_id": message_id, "to": to, "subject": subject, "body": body})
        return {"message_id": message_id, "status": "sent"}


@lru_cache(maxsize=1)
def get_email_channel() -> EmailChannel:
    return RecordingEmailChannel()


def _line_title(item: dict, products: List[dict]) -> str:
    for product in products:
        if ids.ids_equal(product.get("id"), item.get("product")):
            title = product.get("title") or "Product"
            break
    else:
        title = "Product"
    variant = item.get("variant")
    if variant:
        title = f"{title} - {variant['name']}"
    return title


def render_order_confirmation(order: dict, products: List[dict]) -> str:
    lines = [
        f"Hi {order['name']},",
        "",
        "Thank you for your order. Here is what you bought:",
        "",
    ]
    for item in order["items"]:
        unit = item["price_at_purchase"]
        lines.append(f"  {item['quantity']} x {_line_title(item, products)} @ {unit:.2f} = {unit * item['quantity']:.2f}")
    lines += [
        "",
        f"Total: {order['total_amount']:.2f}",
        f"Shipping to: {order['address']}",
        f"Phone: {order['phone']}",
    ]
    if order.get("note"):
        lines.append(f"Note: {order['note']}")
    return "\n".join(lines)


def send_order_confirmation(order: dict, products: List[dict], channel: EmailChannel, store_email: Optional[str] = None) -> None:
    """Email the customer and the store. Raises NotificationError on a failed send."""
    order_id = ids.normalize(order.get("id"))
    subject = f"Order confirmation #{order_id}"
    body = render_order_confirmation(order, products)

    for recipient in (order["email"], store_email or config.STORE_EMAIL):
        result = channel.send(to=recipient, subject=subject, body=body)
        if result.get("status") != "sent":
            raise NotificationError(result.get("error") or "Unknown dispatch error")
        logger.info("Order confirmation sent", order_id=order_id, to=recipient, message_id=result.get("message_id"))
