"""
Outbound email for orders and the contact form.

Sends are best-effort: a failed email is retried, logged, and reported as
False. It never fails the order or request that triggered it.
"""

from decimal import Decimal
from html import escape
from typing import Any, Dict, Optional
import time

from darktides.core import get_logger
from darktides.domain.models import Order, PaymentMethod
from .errors import NotificationError

logger = get_logger(__name__)

RESEARCH_NOTICE = (
    "All products are sold strictly for laboratory research use only. "
    "Not for human or veterinary consumption."
)

def _money(value) -> str:
    return f"${Decimal(str(value)):.2f}"

def order_email_payload(order: Order) -> Dict[str, Any]:
    """Flatten an order into the fields the notification template needs."""
    customer = order.customer_data or {}
    return {
        "order_number": order.order_number,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "customer": customer,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "subtotal": str(order.subtotal),
        "shipping_cost": str(order.shipping_cost),
        "discount_code": order.discount_code,
        "discount_amount": str(order.discount_amount),
        "total": str(order.total),
        "payment_method": order.payment_method,
        "coinbase_charge_code": order.coinbase_charge_code,
        "items": [
            {
                "name": item.product_name,
                "sku": item.sku,
                "quantity": item.quantity,
                "price": str(item.unit_price),
            }
            for item in order.items
        ],
    }

def render_order_email(order: Dict[str, Any], payment_confirmation: Optional[Dict[str, Any]] = None) -> str:
    customer = order.get("customer") or {}
    is_crypto = order.get("payment_method") == PaymentMethod.CRYPTO.value or (
        payment_confirmation or {}
    ).get("method") == PaymentMethod.CRYPTO.value

    rows = "".join(
        "<tr>"
        f"<td>{escape(str(item['name']))}</td>"
        f"<td>{escape(str(item['sku']))}</td>"
        f"<td>{int(item['quantity'])}</td>"
        f"<td>{_money(item['price'])}</td>"
        f"<td>{_money(Decimal(str(item['price'])) * int(item['quantity']))}</td>"
        "</tr>"
        for item in order.get("items", [])
    )

    confirmation = ""
    if payment_confirmation:
        confirmation = (
            "<h3>Payment confirmed</h3>"
            f"<p>Network: {escape(str(payment_confirmation.get('network') or 'Unknown'))}<br>"
            f"Transaction ID: {escape(str(payment_confirmation.get('transaction_id') or 'N/A'))}<br>"
            f"Confirmed at: {escape(str(payment_confirmation.get('confirmed_at') or ''))}</p>"
        )

    notes = ""
    if customer.get("order_notes"):
        notes = f"<h3>Order notes</h3><p><em>{escape(customer['order_notes'])}</em></p>"

    if is_crypto and payment_confirmation:
        next_step = "Crypto payment confirmed! This order is ready to be packed and shipped."
    elif is_crypto:
        next_step = "Awaiting crypto payment confirmation from Coinbase Commerce."
    else:
        next_step = (
            "Customer payment confirmation pending via Venmo. The customer was asked to "
            f"include order number {escape(order['order_number'])} in the payment note."
        )

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>New Order - {escape(order['order_number'])}</title></head>
<body style="font-family: sans-serif; color: #333; max-width: 800px; margin: 0 auto;">
<h1>DarkTides Research</h1>
<h2>Order {escape(order['order_number'])}</h2>
<p>Date: {escape(str(order.get('created_at') or ''))}<br>
Total: <strong>{_money(order['total'])}</strong><br>
Payment method: {'CRYPTO' if is_crypto else 'VENMO'}<br>
Discount: {escape(order.get('discount_code') or 'NONE')}</p>
{confirmation}
<h3>Customer</h3>
<p>{escape(order.get('customer_name') or '')}<br>
{escape(order.get('customer_email') or '')}<br>
{escape(customer.get('phone', ''))}<br>
{escape(customer.get('address', ''))}<br>
{escape(customer.get('city', ''))}, {escape(customer.get('state', ''))} {escape(customer.get('zip', ''))}</p>
<h3>Items</h3>
<table>
<thead><tr><th>Product</th><th>SKU</th><th>Qty</th><th>Unit Price</th><th>Total</th></tr></thead>
<tbody>{rows}</tbody>
</table>
<p>Subtotal: {_money(order['subtotal'])}<br>
Shipping: {_money(order['shipping_cost'])}<br>
Discount: -{_money(order['discount_amount'])}<br>
<strong>Total: {_money(order['total'])}</strong></p>
{notes}
<p>{next_step}</p>
<p><small>{RESEARCH_NOTICE}</small></p>
</body>
</html>"""

def render_contact_email(name: str, email: str, subject: str, message: str) -> str:
    body = escape(message).replace("\n", "<br>")
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Contact Form</title></head>
<body style="font-family: sans-serif; color: #333; max-width: 700px; margin: 0 auto;">
<h1>New contact form message</h1>
<p><strong>{escape(subject)}</strong></p>
<p>From: {escape(name)} &lt;{escape(email)}&gt;</p>
<div>{body}</div>
</body>
</html>"""

class Notifier:
    def __init__(self, settings, client, sleep=time.sleep):
        self.settings = settings
        self.client = client
        self.sleep = sleep

    def _deliver(self, to: str, subject: str, html: str, reply_to: Optional[str] = None) -> bool:
        attempts = max(1, self.settings.NOTIFICATION_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                self.client.send(to, subject, html, reply_to=reply_to)
                return True
            except NotificationError as e:
                logger.warning(
                    f"Email attempt {attempt}/{attempts} failed: {e}",
                    extra={'extra_fields': {'subject': subject}}
                )
                if attempt < attempts:
                    self.sleep(self.settings.NOTIFICATION_RETRY_DELAY_SECONDS)
        logger.error(f"Giving up on email: {subject}")
        return False

    def send_order_notification(self, order: Dict[str, Any], payment_confirmation: Optional[Dict[str, Any]] = None) -> bool:
        subject = f"NEW ORDER RECEIVED {order['order_number']} - {_money(order['total'])}"
        if payment_confirmation:
            subject = f"PAYMENT CONFIRMED {order['order_number']} - {_money(order['total'])}"
        html = render_order_email(order, payment_confirmation)
        return self._deliver(self.settings.NOTIFICATION_EMAIL, subject, html)

    def send_contact_message(self, name: str, email: str, subject: str, message: str) -> bool:
        html = render_contact_email(name, email, subject, message)
        return self._deliver(self.settings.CONTACT_EMAIL, f"[Contact Form] {subject}", html, reply_to=email)
