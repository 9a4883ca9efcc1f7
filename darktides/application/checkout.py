"""
Checkout coordination.

A checkout walks shipping_form -> payment_method_selection and then splits:
Venmo orders get payment instructions and wait for an admin to confirm the
transfer; crypto orders get a hosted Coinbase Commerce charge and are
confirmed by its webhook.
"""

from sqlalchemy.orm import Session
from decimal import Decimal
from typing import Callable, Optional

from darktides.core import get_logger
from darktides.domain.models import Order, Product, PaymentMethod
from .errors import (
    GENERIC_UNAVAILABLE, INVALID_DISCOUNT, OrderValidationError, PaymentProviderError,
)
from .inventory import InventoryService
from .discounts import DiscountService, to_cents
from .orders import OrderService, generate_order_number
from .notifications import order_email_payload
from .schemas import (
    CartItem, CheckoutRequest, CheckoutResult, CryptoRedirect, OrderLine, OrderTotals,
    Quote, VenmoInstructions,
)

logger = get_logger(__name__)

STEP_SHIPPING = "shipping_form"
STEP_PAYMENT = "payment_method_selection"
STEP_VENMO = "venmo_instructions"
STEP_CRYPTO = "crypto_redirect"

def run_now(fn, *args, **kwargs):
    fn(*args, **kwargs)

class CheckoutService:
    def __init__(self, db: Session, notifier, payments, settings, dispatch: Callable = run_now):
        self.db = db
        self.notifier = notifier
        self.payments = payments
        self.settings = settings
        # BackgroundTasks.add_task in the API, a direct call elsewhere
        self.dispatch = dispatch
        self.inventory = InventoryService(db, settings)
        self.orders = OrderService(db)

    def _lines(self, items: list[CartItem]) -> Optional[list[OrderLine]]:
        ids = {item.product_id for item in items}
        products = {
            p.id: p
            for p in self.db.query(Product).filter(Product.id.in_(ids), Product.is_active.is_(True)).all()
        }
        if len(products) != len(ids):
            return None
        return [
            OrderLine(
                product_id=item.product_id,
                name=products[item.product_id].name,
                sku=products[item.product_id].sku,
                unit_price=products[item.product_id].price,
                quantity=item.quantity,
            )
            for item in items
        ]

    def quote(self, items: list[CartItem], discount_code: Optional[str] = None) -> Optional[Quote]:
        """Server-side totals for a cart; None when a line is not sellable."""
        lines = self._lines(items)
        if lines is None:
            return None
        subtotal = to_cents(sum((line.line_total for line in lines), Decimal("0")))
        shipping = to_cents(self.settings.SHIPPING_COST)

        applied_code = None
        discount_amount = Decimal("0.00")
        discount_message = None
        if discount_code and discount_code.strip():
            result = DiscountService(self.db).validate(discount_code, subtotal)
            if result.valid:
                applied_code = result.code
                discount_amount = result.discount_amount
            else:
                discount_message = result.message

        return Quote(
            lines=lines,
            subtotal=subtotal,
            shipping_cost=shipping,
            discount_code=applied_code,
            discount_amount=discount_amount,
            total=subtotal + shipping - discount_amount,
            discount_message=discount_message,
        )

    def place_order(self, session_id: Optional[str], request: CheckoutRequest) -> CheckoutResult:
        if request.order_number:
            existing = self.orders.get_by_number(request.order_number)
            if existing:
                # a resubmitted checkout resumes at the payment step
                return self._payment_step(existing)

        validation = self.inventory.validate_cart(request.items, session_id=session_id)
        if not validation.valid:
            return CheckoutResult(
                success=False,
                step=STEP_SHIPPING,
                invalid_items=validation.invalid_items,
                message=GENERIC_UNAVAILABLE,
            )

        quote = self.quote(request.items, request.discount_code)
        if quote is None:
            return CheckoutResult(success=False, step=STEP_SHIPPING, message=GENERIC_UNAVAILABLE)
        if request.discount_code and request.discount_code.strip() and not quote.discount_code:
            return CheckoutResult(success=False, step=STEP_SHIPPING, message=quote.discount_message or INVALID_DISCOUNT)

        order_number = request.order_number or generate_order_number()
        totals = OrderTotals(
            subtotal=quote.subtotal,
            shipping_cost=quote.shipping_cost,
            discount_code=quote.discount_code,
            discount_amount=quote.discount_amount,
            total=quote.total,
        )
        finalized = self.orders.finalize(
            order_number, session_id, request.customer, quote.lines, totals, request.payment_method,
        )
        if not finalized.success:
            return CheckoutResult(success=False, step=STEP_PAYMENT, message=finalized.message)

        order = self.orders.get_by_number(order_number)
        if not finalized.already_finalized:
            self.dispatch(self.notifier.send_order_notification, order_email_payload(order))
        return self._payment_step(order)

    def _payment_step(self, order: Order) -> CheckoutResult:
        result = CheckoutResult(
            success=True,
            step=STEP_VENMO,
            order_number=order.order_number,
            payment_method=PaymentMethod(order.payment_method),
            totals=OrderTotals(
                subtotal=order.subtotal,
                shipping_cost=order.shipping_cost,
                discount_code=order.discount_code,
                discount_amount=order.discount_amount,
                total=order.total,
            ),
        )
        if order.payment_method == PaymentMethod.VENMO.value:
            result.venmo_instructions = self.venmo_instructions(order)
            return result

        result.step = STEP_CRYPTO
        try:
            result.crypto_redirect = self.create_charge(order.order_number)
        except PaymentProviderError as e:
            # order and stock stay; the client retries the charge only
            logger.error(f"Charge creation failed for {order.order_number}: {e}")
            result.success = False
            result.message = e.public_message
        return result

    def venmo_instructions(self, order: Order) -> VenmoInstructions:
        handle = self.settings.VENMO_HANDLE
        amount = to_cents(order.total)
        return VenmoInstructions(
            handle=handle,
            amount=amount,
            memo=order.order_number,
            payment_url=f"https://venmo.com/{handle}?txn=pay&amount={amount:.2f}",
        )

    def create_charge(self, order_number: str) -> CryptoRedirect:
        """Attach a hosted charge to a crypto order, or return the one it already has."""
        order = self.orders.get_or_404(order_number)
        if order.payment_method != PaymentMethod.CRYPTO.value:
            raise OrderValidationError(f"order {order_number} is not a crypto order", "Order is not a crypto order")
        if order.coinbase_charge_code and order.coinbase_hosted_url:
            return CryptoRedirect(charge_code=order.coinbase_charge_code, hosted_url=order.coinbase_hosted_url)

        charge = self.payments.create_charge(
            order.order_number,
            order.total,
            order.customer_email,
            order.customer_name,
            [{"name": item.product_name, "quantity": item.quantity} for item in order.items],
        )
        self.orders.attach_charge(order.order_number, charge["code"], charge["hosted_url"])
        return CryptoRedirect(
            charge_code=charge["code"],
            hosted_url=charge["hosted_url"],
            expires_at=charge.get("expires_at"),
        )
