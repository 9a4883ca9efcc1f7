from sqlalchemy.orm import Session
from sqlalchemy import update, delete, func, case
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta
from typing import Optional
import secrets
import string
import time

from darktides.core import get_logger
from darktides.core_settings import get_settings
from darktides.domain.models import Product, Reservation, utcnow
from .errors import GENERIC_UNAVAILABLE
from .schemas import (
    AvailabilityResult, ReservationResult, CartItem, CartValidationResult,
)

logger = get_logger(__name__)

_SESSION_ALPHABET = string.ascii_lowercase + string.digits

def new_session_id() -> str:
    """Shopper session key in the form session_<millis>_<random>."""
    suffix = "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"

def release_hold(db: Session, product_id: str, quantity: int) -> None:
    """Give ``quantity`` units of hold back to a product, clamped at zero."""
    db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(reserved_quantity=case(
            (Product.reserved_quantity >= quantity, Product.reserved_quantity - quantity),
            else_=0,
        ))
        .execution_options(synchronize_session=False)
    )

def delete_reservation(db: Session, reservation: Reservation) -> bool:
    """Delete one reservation and release its hold.

    Returns False when another transaction already removed it, in which case
    the hold was released there and must not be released twice.
    """
    result = db.execute(
        delete(Reservation)
        .where(Reservation.id == reservation.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    release_hold(db, reservation.product_id, reservation.quantity)
    return True

class InventoryService:
    def __init__(self, db: Session, settings=None):
        self.db = db
        self.settings = settings or get_settings()

    def held_by_session(self, session_id: str, product_id: str) -> int:
        """Units the session still holds on a product, expired-but-uncleaned included."""
        total = (
            self.db.query(func.coalesce(func.sum(Reservation.quantity), 0))
            .filter(Reservation.session_id == session_id, Reservation.product_id == product_id)
            .scalar()
        )
        return int(total or 0)

    def check_availability(self, product_id: str, quantity: int, session_id: Optional[str] = None) -> AvailabilityResult:
        if quantity < 1:
            return AvailabilityResult(available=False, message=GENERIC_UNAVAILABLE)
        try:
            product = (
                self.db.query(Product)
                .filter(Product.id == product_id)
                .populate_existing()
                .first()
            )
            if not product or not product.is_active:
                return AvailabilityResult(available=False, message=GENERIC_UNAVAILABLE)
            sellable = product.stock_quantity - product.reserved_quantity
            if session_id:
                # a shopper's own holds never block their own cart
                sellable += self.held_by_session(session_id, product_id)
            if sellable >= quantity:
                return AvailabilityResult(available=True)
            return AvailabilityResult(available=False, message=GENERIC_UNAVAILABLE)
        except SQLAlchemyError:
            logger.error(f"Availability check failed for product {product_id}", exc_info=True)
            self.db.rollback()
            return AvailabilityResult(available=False, message=GENERIC_UNAVAILABLE)

    def reserve(self, product_id: str, quantity: int, session_id: str) -> ReservationResult:
        """Place a timed hold on stock for a shopper session.

        The guarded UPDATE is the first statement of the transaction: it only
        matches while enough unheld stock remains, so concurrent callers can
        never push reserved_quantity past stock_quantity.
        """
        if quantity < 1 or not session_id:
            return ReservationResult(success=False, message=GENERIC_UNAVAILABLE)
        try:
            result = self.db.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.is_active.is_(True),
                    Product.stock_quantity - Product.reserved_quantity >= quantity,
                )
                .values(reserved_quantity=Product.reserved_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.info(
                    f"Reservation refused for product {product_id}",
                    extra={'extra_fields': {'product_id': product_id, 'quantity': quantity}}
                )
                return ReservationResult(success=False, message=GENERIC_UNAVAILABLE)

            reservation = Reservation(
                session_id=session_id,
                product_id=product_id,
                quantity=quantity,
                expires_at=utcnow() + timedelta(minutes=self.settings.RESERVATION_TTL_MINUTES),
            )
            self.db.add(reservation)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Reservation failed for product {product_id}", exc_info=True)
            return ReservationResult(success=False, message=GENERIC_UNAVAILABLE)

        logger.info(
            f"Reserved {quantity} x {product_id}",
            extra={'extra_fields': {'reservation_id': reservation.id, 'expires_at': reservation.expires_at}}
        )
        return ReservationResult(
            success=True,
            reservation_id=reservation.id,
            expires_at=reservation.expires_at,
        )

    def release(self, reservation_id: str, session_id: Optional[str] = None) -> bool:
        """Drop a hold early. Unknown ids (or another session's) are a no-op."""
        reservation = self.db.get(Reservation, reservation_id)
        if not reservation or (session_id and reservation.session_id != session_id):
            return False
        try:
            released = delete_reservation(self.db, reservation)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Releasing reservation {reservation_id} failed", exc_info=True)
            raise
        self.db.expunge(reservation)
        return released

    def session_reservations(self, session_id: str) -> list[Reservation]:
        return (
            self.db.query(Reservation)
            .filter(Reservation.session_id == session_id, Reservation.expires_at > utcnow())
            .order_by(Reservation.created_at)
            .all()
        )

    def validate_cart(self, items: list[CartItem], session_id: Optional[str] = None) -> CartValidationResult:
        # repeated lines for one product are checked against stock together
        wanted: dict[str, int] = {}
        for item in items:
            wanted[item.product_id] = wanted.get(item.product_id, 0) + item.quantity
        invalid_items = [
            product_id for product_id, quantity in wanted.items()
            if not self.check_availability(product_id, quantity, session_id=session_id).available
        ]
        return CartValidationResult(valid=not invalid_items, invalid_items=invalid_items)

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired holds and give their units back. Returns holds removed."""
        now = now or utcnow()
        expired = (
            self.db.query(Reservation)
            .filter(Reservation.expires_at <= now)
            .order_by(Reservation.product_id, Reservation.id)
            .all()
        )
        if not expired:
            return 0

        removed = 0
        try:
            # lock in sorted order, same as finalize, to avoid deadlocks
            product_ids = sorted({r.product_id for r in expired})
            (
                self.db.query(Product.id)
                .filter(Product.id.in_(product_ids))
                .order_by(Product.id)
                .with_for_update()
                .all()
            )
            for reservation in expired:
                if delete_reservation(self.db, reservation):
                    removed += 1
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Expired reservation cleanup failed", exc_info=True)
            raise
        finally:
            for reservation in expired:
                if reservation in self.db:
                    self.db.expunge(reservation)

        if removed:
            logger.info(f"Released {removed} expired reservations")
        return removed
