from sqlalchemy.orm import Session
from sqlalchemy import update, case, or_
from sqlalchemy.exc import IntegrityError
from typing import Any, Dict, Optional, Tuple
import hashlib
import json

from darktides.core import get_logger, set_request_context
from darktides.domain.models import Order, PaymentEvent, OrderStatus, PaymentMethod, PaymentStatus
from .schemas import ConfirmResult

logger = get_logger(__name__)

CONFIRMED_EVENTS = {"charge:confirmed", "charge:resolved"}
STATUS_EVENTS = {
    "charge:pending": PaymentStatus.PENDING_CONFIRMATION.value,
    "charge:failed": PaymentStatus.FAILED.value,
    "charge:expired": PaymentStatus.EXPIRED.value,
}

def event_details(event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """The slice of a charge kept on the order for the back office."""
    details = {
        "status": event_type.split(":", 1)[-1],
        "payments": data.get("payments") or [],
        "timeline": data.get("timeline") or [],
    }
    if event_type in CONFIRMED_EVENTS:
        details["confirmed_at"] = data.get("confirmed_at")
    return details

def payment_confirmation(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    details = details if isinstance(details, dict) else {}
    payments = details.get("payments")
    first = payments[0] if isinstance(payments, list) and payments else None
    if not isinstance(first, dict):
        first = {}
    return {
        "method": PaymentMethod.CRYPTO.value,
        "network": first.get("network"),
        "transaction_id": first.get("transaction_id"),
        "confirmed_at": details.get("confirmed_at"),
    }

class PaymentService:
    def __init__(self, db: Session):
        self.db = db

    def list_events(self, unprocessed: bool = False):
        query = self.db.query(PaymentEvent)
        if unprocessed:
            query = query.filter(PaymentEvent.processed.is_(False))
        return query.order_by(PaymentEvent.created_at.desc()).all()

    def record_event(self, event: Dict[str, Any]) -> Tuple[Optional[PaymentEvent], bool]:
        """Stage a verified delivery. Returns (event, False) for a repeat delivery."""
        data = event.get("data") or {}
        event_id = event.get("id")
        if not event_id:
            event_id = "sha256:" + hashlib.sha256(
                json.dumps(event, sort_keys=True, default=str).encode("utf-8")
            ).hexdigest()

        existing = self.db.query(PaymentEvent).filter(PaymentEvent.event_id == str(event_id)).first()
        if existing:
            return existing, False

        stored = PaymentEvent(
            event_id=str(event_id),
            event_type=event.get("type") or "unknown",
            charge_code=data.get("code"),
            order_number=(data.get("metadata") or {}).get("order_number"),
            payload=event,
            processed=False,
        )
        self.db.add(stored)
        self.db.flush()
        return stored, True

    def handle_event(self, event: Dict[str, Any]) -> ConfirmResult:
        """
        Apply one verified Coinbase Commerce event.

        Recording the delivery and applying it share a transaction, so a
        crash leaves nothing behind and the processor's retry is processed
        normally. A repeat of an event id that already committed is
        acknowledged without side effects.
        """
        try:
            stored, is_new = self.record_event(event)
        except IntegrityError:
            self.db.rollback()
            return ConfirmResult(success=True, message="duplicate event")
        if not is_new:
            logger.info(f"Duplicate webhook event {stored.event_id} ignored")
            return ConfirmResult(success=True, order_number=stored.order_number, message="duplicate event")

        event_type = stored.event_type
        data = event.get("data") or {}
        set_request_context(order_number=stored.order_number)

        if event_type in CONFIRMED_EVENTS:
            details = event_details(event_type, data)
            order = self._find_order(stored.charge_code, stored.order_number)
            if not order:
                logger.warning(
                    f"Unmatched crypto confirmation for charge {stored.charge_code}",
                    extra={'extra_fields': {'event_id': stored.event_id, 'order_number': stored.order_number}}
                )
                self._commit(stored)
                return ConfirmResult(success=False, order_number=stored.order_number, message="Order not found")
            order_number = order.order_number
            newly_confirmed = self._confirm(order, details)
            stored.processed = True
            if not self._commit(stored):
                return ConfirmResult(success=True, order_number=order_number, message="duplicate event")
            return ConfirmResult(success=True, order_number=order_number, newly_confirmed=newly_confirmed)

        if event_type in STATUS_EVENTS:
            order = self._find_order(stored.charge_code, stored.order_number)
            if order:
                self._set_status(order, STATUS_EVENTS[event_type], event_details(event_type, data))
                stored.processed = True
            self._commit(stored)
            return ConfirmResult(success=order is not None, order_number=stored.order_number)

        logger.info(f"Ignoring webhook event type {event_type}")
        stored.processed = True
        self._commit(stored)
        return ConfirmResult(success=True, message="ignored")

    def confirm_crypto_payment(self, charge_code: str, details: Optional[Dict[str, Any]] = None) -> ConfirmResult:
        order = self._find_order(charge_code, None)
        if not order:
            return ConfirmResult(success=False, message="Order not found")
        newly_confirmed = self._confirm(order, details or {"status": "confirmed"})
        self.db.commit()
        return ConfirmResult(success=True, order_number=order.order_number, newly_confirmed=newly_confirmed)

    def confirm_crypto_order(self, order_number: str, details: Optional[Dict[str, Any]] = None) -> ConfirmResult:
        """Operator recovery for confirmations that arrived before the charge was linked."""
        order = self.db.query(Order).filter(Order.order_number == order_number).first()
        if not order or order.payment_method != PaymentMethod.CRYPTO.value:
            return ConfirmResult(success=False, order_number=order_number, message="Order not found")

        if details is None:
            details = self._stored_confirmation(order)
        newly_confirmed = self._confirm(order, details or {"status": "confirmed"})

        conditions = [PaymentEvent.order_number == order.order_number]
        if order.coinbase_charge_code:
            conditions.append(PaymentEvent.charge_code == order.coinbase_charge_code)
        (
            self.db.query(PaymentEvent)
            .filter(or_(*conditions), PaymentEvent.event_type.in_(CONFIRMED_EVENTS))
            .update({PaymentEvent.processed: True}, synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Crypto payment for {order_number} confirmed manually")
        return ConfirmResult(success=True, order_number=order.order_number, newly_confirmed=newly_confirmed)

    def _find_order(self, charge_code: Optional[str], order_number: Optional[str]) -> Optional[Order]:
        order = None
        if charge_code:
            order = self.db.query(Order).filter(Order.coinbase_charge_code == charge_code).first()
        if not order and order_number:
            order = (
                self.db.query(Order)
                .filter(Order.order_number == order_number, Order.payment_method == PaymentMethod.CRYPTO.value)
                .first()
            )
        return order

    def _stored_confirmation(self, order: Order) -> Optional[Dict[str, Any]]:
        conditions = [PaymentEvent.order_number == order.order_number]
        if order.coinbase_charge_code:
            conditions.append(PaymentEvent.charge_code == order.coinbase_charge_code)
        event = (
            self.db.query(PaymentEvent)
            .filter(or_(*conditions), PaymentEvent.event_type.in_(CONFIRMED_EVENTS))
            .order_by(PaymentEvent.created_at.desc())
            .first()
        )
        if not event:
            return None
        return event_details(event.event_type, event.payload.get("data") or {})

    def _confirm(self, order: Order, details: Dict[str, Any]) -> bool:
        # the WHERE clause makes exactly one confirmation "new"
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status != PaymentStatus.CONFIRMED.value)
            .values(
                payment_status=PaymentStatus.CONFIRMED.value,
                status=case(
                    (Order.status == OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value),
                    else_=Order.status,
                ),
                crypto_payment_details=details,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.expire(order)
        return result.rowcount == 1

    def _set_status(self, order: Order, payment_status: str, details: Dict[str, Any]) -> None:
        self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status != PaymentStatus.CONFIRMED.value)
            .values(payment_status=payment_status, crypto_payment_details=details)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(order)
        logger.info(f"Order {order.order_number} payment status -> {payment_status}")

    def _commit(self, stored: PaymentEvent) -> bool:
        event_id = stored.event_id
        try:
            self.db.commit()
        except IntegrityError:
            # a concurrent delivery of the same event won
            self.db.rollback()
            logger.info(f"Webhook event {event_id} recorded concurrently")
            return False
        return True
