from sqlalchemy.orm import Session
from sqlalchemy import update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from decimal import Decimal
from typing import Optional
import secrets
import string

from darktides.core import get_logger, set_request_context
from darktides.domain.models import (
    Product, Reservation, Order, OrderItem, DiscountCode, InventoryTransaction,
    OrderStatus, PaymentMethod, PaymentStatus,
)
from .errors import (
    StorefrontError, InsufficientStockError, OrderValidationError,
    InvalidDiscountError, InvalidTransitionError, NotFoundError,
)
from .inventory import delete_reservation
from .discounts import to_cents
from .schemas import CustomerData, OrderLine, OrderTotals, FinalizeResult, OrderStatusRead

logger = get_logger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits

# Manual back-office moves; everything else is refused
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value},
    OrderStatus.CONFIRMED.value: {OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value},
}

def generate_order_number() -> str:
    """Human-facing order number, DT- plus six upper-case alphanumerics."""
    return "DT-" + "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(6))

def initial_payment_status(payment_method: PaymentMethod) -> str:
    if payment_method == PaymentMethod.CRYPTO:
        return PaymentStatus.PENDING_CRYPTO.value
    return PaymentStatus.PENDING.value

class OrderService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_number(self, order_number: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.order_number == order_number).first()

    def get_or_404(self, order_number: str) -> Order:
        order = self.get_by_number(order_number)
        if not order:
            raise NotFoundError(f"order {order_number} not found", "Order not found")
        return order

    def list_orders(self, status: Optional[str] = None):
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        return query.order_by(Order.created_at.desc()).all()

    def payment_status(self, order_number: str) -> Optional[OrderStatusRead]:
        order = self.get_by_number(order_number)
        if not order:
            return None
        return OrderStatusRead(
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
        )

    def finalize(
        self,
        order_number: str,
        session_id: Optional[str],
        customer: CustomerData,
        items: list[OrderLine],
        totals: OrderTotals,
        payment_method: PaymentMethod,
    ) -> FinalizeResult:
        """
        Turn a validated cart into an order in a single transaction.

        Stock is deducted with guarded UPDATEs against product rows locked in
        id order, the session's holds are consumed, the discount's usage is
        counted, and the order plus its line snapshots are inserted. Any
        failure rolls the whole thing back. Retrying with the same order
        number reports success without touching stock again.
        """
        set_request_context(order_number=order_number, session_id=session_id)

        if self.get_by_number(order_number):
            logger.info(f"Order {order_number} already finalized")
            return FinalizeResult(success=True, order_number=order_number, already_finalized=True)

        try:
            self._validate(items, totals)
            self._deduct_stock(order_number, session_id, items)
            order = self._insert_order(order_number, session_id, customer, items, totals, payment_method)
            if totals.discount_code:
                self._count_discount_use(totals.discount_code)
            if session_id:
                self._release_session(session_id)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self.get_by_number(order_number):
                # lost the race to a concurrent finalize with the same number
                logger.info(f"Order {order_number} finalized concurrently")
                return FinalizeResult(success=True, order_number=order_number, already_finalized=True)
            logger.error(f"Finalizing order {order_number} violated a constraint", exc_info=True)
            return FinalizeResult(success=False, message=StorefrontError.public_message)
        except StorefrontError as e:
            self.db.rollback()
            logger.warning(f"Order {order_number} rejected: {e}")
            return FinalizeResult(success=False, message=e.public_message)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Finalizing order {order_number} failed", exc_info=True)
            return FinalizeResult(success=False, message=StorefrontError.public_message)

        logger.info(
            f"Order {order_number} finalized",
            extra={'extra_fields': {
                'order_id': order.id,
                'total': str(order.total),
                'payment_method': order.payment_method,
                'items': len(items),
            }}
        )
        return FinalizeResult(success=True, order_number=order_number)

    def _validate(self, items: list[OrderLine], totals: OrderTotals) -> None:
        if not items:
            raise OrderValidationError("order has no items")
        if any(line.quantity < 1 for line in items):
            raise OrderValidationError("line quantity below 1")
        subtotal = to_cents(sum((line.line_total for line in items), Decimal("0")))
        if subtotal != to_cents(totals.subtotal):
            raise OrderValidationError(f"subtotal {totals.subtotal} does not match lines {subtotal}")
        expected = to_cents(totals.subtotal) + to_cents(totals.shipping_cost) - to_cents(totals.discount_amount)
        if to_cents(totals.total) != expected or expected < 0:
            raise OrderValidationError(f"total {totals.total} does not match {expected}")

    def _deduct_stock(self, order_number: str, session_id: Optional[str], items: list[OrderLine]) -> None:
        wanted: dict[str, int] = {}
        for line in items:
            wanted[line.product_id] = wanted.get(line.product_id, 0) + line.quantity

        for product_id in sorted(wanted):
            quantity = wanted[product_id]
            product = (
                self.db.query(Product)
                .filter(Product.id == product_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if not product or not product.is_active:
                raise InsufficientStockError(f"product {product_id} not sellable")

            held = 0
            if session_id:
                held = int(
                    self.db.query(func.coalesce(func.sum(Reservation.quantity), 0))
                    .filter(Reservation.session_id == session_id, Reservation.product_id == product_id)
                    .scalar() or 0
                )
                held = min(held, product.reserved_quantity)

            # the session's holds convert into the sale; other holds stay protected
            result = self.db.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.stock_quantity - quantity >= Product.reserved_quantity - held,
                )
                .values(
                    stock_quantity=Product.stock_quantity - quantity,
                    reserved_quantity=Product.reserved_quantity - held,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InsufficientStockError(f"insufficient stock for {product_id}")

            self.db.add(InventoryTransaction(
                product_id=product_id,
                transaction_type="sale",
                quantity_change=-quantity,
                balance_after=product.stock_quantity - quantity,
                order_number=order_number,
                details={"session_id": session_id, "held": held},
            ))

            if held:
                # their units were already given back above
                (
                    self.db.query(Reservation)
                    .filter(Reservation.session_id == session_id, Reservation.product_id == product_id)
                    .delete(synchronize_session=False)
                )

    def _insert_order(self, order_number, session_id, customer, items, totals, payment_method) -> Order:
        order = Order(
            order_number=order_number,
            session_id=session_id,
            customer_data=customer.model_dump(),
            customer_name=customer.full_name,
            customer_email=customer.email,
            subtotal=to_cents(totals.subtotal),
            shipping_cost=to_cents(totals.shipping_cost),
            discount_code=totals.discount_code,
            discount_amount=to_cents(totals.discount_amount),
            total=to_cents(totals.total),
            payment_method=payment_method.value,
            payment_status=initial_payment_status(payment_method),
            status=OrderStatus.PENDING.value,
        )
        for line in items:
            order.items.append(OrderItem(
                product_id=line.product_id,
                product_name=line.name,
                sku=line.sku,
                quantity=line.quantity,
                unit_price=to_cents(line.unit_price),
            ))
        self.db.add(order)
        self.db.flush()
        return order

    def _count_discount_use(self, code: str) -> None:
        result = self.db.execute(
            update(DiscountCode)
            .where(
                func.upper(DiscountCode.code) == code.strip().upper(),
                DiscountCode.is_active.is_(True),
            )
            .values(usage_count=DiscountCode.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidDiscountError(f"discount {code} missing or inactive")

    def _release_session(self, session_id: str) -> None:
        leftovers = (
            self.db.query(Reservation)
            .filter(Reservation.session_id == session_id)
            .order_by(Reservation.product_id, Reservation.id)
            .all()
        )
        for reservation in leftovers:
            delete_reservation(self.db, reservation)

    # back-office

    def update_status(self, order_number: str, new_status: OrderStatus) -> Order:
        order = self.get_or_404(order_number)
        if new_status.value not in ALLOWED_TRANSITIONS.get(order.status, set()):
            raise InvalidTransitionError(f"{order.status} -> {new_status.value}")

        order.status = new_status.value
        if new_status == OrderStatus.CONFIRMED and order.payment_method == PaymentMethod.VENMO.value:
            order.payment_status = PaymentStatus.COMPLETED.value
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order_number} moved to {order.status}")
        return order

    def attach_charge(self, order_number: str, charge_code: str, hosted_url: str) -> Order:
        order = self.get_or_404(order_number)
        order.coinbase_charge_code = charge_code
        order.coinbase_hosted_url = hosted_url
        self.db.commit()
        self.db.refresh(order)
        return order
