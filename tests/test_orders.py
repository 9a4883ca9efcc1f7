from decimal import Decimal

import pytest

from darktides.application.errors import InvalidTransitionError
from darktides.application.inventory import InventoryService
from darktides.application.orders import OrderService, generate_order_number
from darktides.application.schemas import CustomerData, OrderLine, OrderTotals
from darktides.domain.models import (
    DiscountCode, InventoryTransaction, Order, OrderStatus, PaymentMethod, Reservation,
)
from helpers import product_state

def line(product_id, price, quantity, name="Peptide"):
    return OrderLine(product_id=product_id, name=name, sku=f"SKU-{product_id}",
                     unit_price=Decimal(price), quantity=quantity)

def totals(subtotal, discount="0.00", code=None, shipping="0.00"):
    subtotal, discount, shipping = Decimal(subtotal), Decimal(discount), Decimal(shipping)
    return OrderTotals(subtotal=subtotal, shipping_cost=shipping, discount_code=code,
                       discount_amount=discount, total=subtotal + shipping - discount)

@pytest.fixture
def buyer(customer):
    return CustomerData(**customer)

def test_order_number_format():
    number = generate_order_number()
    assert number.startswith("DT-")
    assert len(number) == 9
    assert number[3:].isalnum() and number[3:].upper() == number[3:]

def test_finalize_creates_order_and_deducts_stock(db, catalog, buyer):
    result = OrderService(db).finalize(
        "DT-ORD001", None, buyer, [line("bpc157-10", "40.00", 2)], totals("80.00"), PaymentMethod.VENMO,
    )
    assert result.success and not result.already_finalized

    order = db.query(Order).filter_by(order_number="DT-ORD001").one()
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.customer_name == "Ada Lovelace"
    assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [("bpc157-10", 2, Decimal("40.00"))]
    assert product_state("bpc157-10") == (3, 0)

    sale = db.query(InventoryTransaction).filter_by(transaction_type="sale").one()
    assert sale.quantity_change == -2
    assert sale.balance_after == 3
    assert sale.order_number == "DT-ORD001"

def test_crypto_orders_start_pending_crypto(db, catalog, buyer):
    OrderService(db).finalize(
        "DT-ORD002", None, buyer, [line("sema-5", "8.00", 1)], totals("8.00"), PaymentMethod.CRYPTO,
    )
    assert OrderService(db).get_by_number("DT-ORD002").payment_status == "pending_crypto"

def test_finalize_twice_deducts_once(db, catalog, buyer):
    service = OrderService(db)
    args = ("DT-ORD003", None, buyer, [line("bpc157-10", "40.00", 1)], totals("40.00"), PaymentMethod.VENMO)
    assert service.finalize(*args).success
    again = service.finalize(*args)
    assert again.success and again.already_finalized
    assert db.query(Order).count() == 1
    assert product_state("bpc157-10") == (4, 0)

def test_mismatched_total_rolls_back(db, catalog, buyer):
    bad = OrderTotals(subtotal=Decimal("40.00"), total=Decimal("1.00"))
    result = OrderService(db).finalize(
        "DT-ORD004", None, buyer, [line("bpc157-10", "40.00", 1)], bad, PaymentMethod.VENMO,
    )
    assert not result.success
    assert result.message == "Unable to process order, please try again"
    assert db.query(Order).count() == 0
    assert product_state("bpc157-10") == (5, 0)

def test_insufficient_stock_rolls_back_every_line(db, catalog, buyer):
    result = OrderService(db).finalize(
        "DT-ORD005", None, buyer,
        [line("bpc157-10", "40.00", 1), line("sema-5", "8.00", 4)],
        totals("72.00"), PaymentMethod.VENMO,
    )
    assert not result.success
    assert result.message == "Product temporarily unavailable"
    assert product_state("bpc157-10") == (5, 0)
    assert product_state("sema-5") == (3, 0)
    assert db.query(InventoryTransaction).count() == 0

def test_other_sessions_holds_are_protected(db, catalog, buyer):
    InventoryService(db).reserve("sema-5", 2, "session_other")
    result = OrderService(db).finalize(
        "DT-ORD006", "session_me", buyer, [line("sema-5", "8.00", 2)], totals("16.00"), PaymentMethod.VENMO,
    )
    assert not result.success
    assert product_state("sema-5") == (3, 2)

def test_finalize_consumes_session_holds(db, catalog, buyer):
    inventory = InventoryService(db)
    inventory.reserve("sema-5", 3, "session_me")
    inventory.reserve("bpc157-10", 1, "session_me")
    inventory.reserve("bpc157-10", 2, "session_other")

    result = OrderService(db).finalize(
        "DT-ORD007", "session_me", buyer, [line("sema-5", "8.00", 3)], totals("24.00"), PaymentMethod.VENMO,
    )
    assert result.success
    assert product_state("sema-5") == (0, 0)
    # holds on products not bought are released too
    assert product_state("bpc157-10") == (5, 2)
    db.expire_all()
    assert [r.session_id for r in db.query(Reservation).all()] == ["session_other"]

def test_duplicate_lines_are_merged(db, catalog, buyer):
    result = OrderService(db).finalize(
        "DT-ORD008", None, buyer,
        [line("sema-5", "8.00", 2), line("sema-5", "8.00", 1)],
        totals("24.00"), PaymentMethod.VENMO,
    )
    assert result.success
    assert product_state("sema-5") == (0, 0)

def test_discount_usage_counted_on_finalize(db, catalog, buyer):
    result = OrderService(db).finalize(
        "DT-ORD009", None, buyer, [line("bpc157-10", "40.00", 1)],
        totals("40.00", discount="10.00", code="SAVE10"), PaymentMethod.VENMO,
    )
    assert result.success
    db.expire_all()
    assert db.query(DiscountCode).filter_by(code="SAVE10").one().usage_count == 1
    assert OrderService(db).get_by_number("DT-ORD009").total == Decimal("30.00")

def test_inactive_discount_rolls_back_order(db, catalog, buyer):
    result = OrderService(db).finalize(
        "DT-ORD010", None, buyer, [line("bpc157-10", "40.00", 1)],
        totals("40.00", discount="5.00", code="OLD"), PaymentMethod.VENMO,
    )
    assert not result.success
    assert result.message == "Invalid discount code"
    assert db.query(Order).count() == 0
    assert product_state("bpc157-10") == (5, 0)

def test_status_transitions(db, catalog, buyer):
    service = OrderService(db)
    service.finalize("DT-ORD011", None, buyer, [line("sema-5", "8.00", 1)], totals("8.00"), PaymentMethod.VENMO)

    order = service.update_status("DT-ORD011", OrderStatus.CONFIRMED)
    assert order.status == "confirmed"
    assert order.payment_status == "completed"
    assert service.update_status("DT-ORD011", OrderStatus.SHIPPED).status == "shipped"

    with pytest.raises(InvalidTransitionError):
        service.update_status("DT-ORD011", OrderStatus.PENDING)
