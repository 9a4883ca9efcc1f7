from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from darktides.core import get_logger
from darktides.domain.models import DiscountCode, DiscountType, Order, OrderStatus
from .errors import DuplicateError, NotFoundError, StorefrontError, INVALID_DISCOUNT
from .schemas import (
    DiscountResult, DiscountCodeCreate, DiscountCodeUpdate, DiscountStats,
)

logger = get_logger(__name__)

CENT = Decimal("0.01")
VALIDATION_UNAVAILABLE = "Unable to validate discount code"

def to_cents(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)

def compute_discount(discount_type: str, value: Decimal, subtotal: Decimal) -> Decimal:
    """Discount amount for a subtotal; never more than the subtotal itself."""
    subtotal = Decimal(str(subtotal))
    value = Decimal(str(value))
    if discount_type == DiscountType.PERCENTAGE.value:
        amount = subtotal * value / Decimal(100)
    else:
        amount = value
    return to_cents(min(amount, subtotal))

class DiscountService:
    def __init__(self, db: Session):
        self.db = db

    def find_active(self, code: str) -> Optional[DiscountCode]:
        normalized = (code or "").strip()
        if not normalized:
            return None
        return (
            self.db.query(DiscountCode)
            .filter(func.upper(DiscountCode.code) == normalized.upper())
            .filter(DiscountCode.is_active.is_(True))
            .first()
        )

    def validate(self, code: str, subtotal: Decimal) -> DiscountResult:
        """Price a code against a subtotal. Read-only; usage is counted at finalize."""
        try:
            discount = self.find_active(code)
        except SQLAlchemyError:
            logger.error("Discount lookup failed", exc_info=True)
            self.db.rollback()
            return DiscountResult(valid=False, message=VALIDATION_UNAVAILABLE)

        if not discount:
            return DiscountResult(valid=False, message=INVALID_DISCOUNT)

        return DiscountResult(
            valid=True,
            code=discount.code,
            discount_type=DiscountType(discount.discount_type),
            discount_value=discount.discount_value,
            discount_amount=compute_discount(discount.discount_type, discount.discount_value, subtotal),
        )

    # back-office

    def list(self):
        return self.db.query(DiscountCode).order_by(DiscountCode.created_at.desc()).all()

    def get(self, discount_id: str) -> DiscountCode:
        discount = self.db.get(DiscountCode, discount_id)
        if not discount:
            raise NotFoundError(f"discount {discount_id} not found", "Discount code not found")
        return discount

    def create(self, data: DiscountCodeCreate) -> DiscountCode:
        discount = DiscountCode(
            code=data.code,
            description=data.description,
            discount_type=data.discount_type.value,
            discount_value=data.discount_value,
            is_active=True,
        )
        self.db.add(discount)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateError(f"discount code {data.code} exists")
        self.db.refresh(discount)
        logger.info(f"Discount code {discount.code} created")
        return discount

    def update(self, discount_id: str, data: DiscountCodeUpdate) -> DiscountCode:
        discount = self.get(discount_id)
        changes = data.model_dump(exclude_unset=True)
        if "discount_type" in changes and changes["discount_type"] is not None:
            changes["discount_type"] = changes["discount_type"].value
        for key, value in changes.items():
            if value is not None:
                setattr(discount, key, value)
        if discount.discount_type == DiscountType.PERCENTAGE.value and discount.discount_value > 100:
            self.db.rollback()
            raise StorefrontError("percentage over 100", "Percentage discounts cannot exceed 100")
        self.db.commit()
        self.db.refresh(discount)
        return discount

    def toggle(self, discount_id: str) -> DiscountCode:
        discount = self.get(discount_id)
        discount.is_active = not discount.is_active
        self.db.commit()
        self.db.refresh(discount)
        return discount

    def delete(self, discount_id: str) -> None:
        discount = self.get(discount_id)
        self.db.delete(discount)
        self.db.commit()

    def stats(self, discount_id: str) -> DiscountStats:
        """Revenue and discount totals over confirmed orders that used the code."""
        discount = self.get(discount_id)
        count, revenue, discounts = (
            self.db.query(
                func.count(Order.id),
                func.coalesce(func.sum(Order.total), 0),
                func.coalesce(func.sum(Order.discount_amount), 0),
            )
            .filter(Order.discount_code == discount.code, Order.status == OrderStatus.CONFIRMED.value)
            .one()
        )
        return DiscountStats(
            total_usage=count,
            total_revenue=to_cents(revenue),
            total_discounts=to_cents(discounts),
        )
