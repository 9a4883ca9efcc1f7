from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session
from typing import Optional
from darktides.core_settings import get_settings, Settings
from darktides.infrastructure.db import get_db
from darktides.application.discounts import DiscountService
from darktides.application.errors import NotFoundError, StorefrontError
from darktides.application.notifications import order_email_payload
from darktides.application.orders import OrderService
from darktides.application.payments import PaymentService, payment_confirmation
from darktides.application.products import ProductService
from darktides.application.schemas import (
    ConfirmResult, DiscountCodeCreate, DiscountCodeRead, DiscountCodeUpdate, DiscountStats,
    InventoryTransactionRead, OrderRead, OrderStatusUpdate, PaymentEventRead,
    ProductCreate, ProductRead, ProductUpdate, StockUpdate, Token, TokenRequest,
)
from darktides.domain.models import OrderStatus
from .auth_local import check_credentials, create_access_token
from .deps import get_notifier, require_admin

router = APIRouter(prefix="/admin", tags=["admin"])
protected = APIRouter(dependencies=[Depends(require_admin)])

def _raise(e: StorefrontError):
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=e.public_message)
    raise HTTPException(status_code=409, detail=e.public_message)

@router.post("/token", response_model=Token)
def issue_token(payload: TokenRequest, settings: Settings = Depends(get_settings)):
    if not check_credentials(payload.username, payload.password, settings):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return Token(access_token=create_access_token(payload.username, settings))

# products

@protected.get("/products", response_model=list[ProductRead])
def list_products(db: Session = Depends(get_db)):
    return ProductService(db).list()

@protected.post("/products", response_model=ProductRead, status_code=201)
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    try:
        return ProductService(db).create(payload)
    except StorefrontError as e:
        _raise(e)

@protected.patch("/products/{product_id}", response_model=ProductRead)
def update_product(product_id: str, payload: ProductUpdate, db: Session = Depends(get_db)):
    try:
        return ProductService(db).update(product_id, payload)
    except StorefrontError as e:
        _raise(e)

@protected.put("/products/{product_id}/stock", response_model=ProductRead)
def set_stock(product_id: str, payload: StockUpdate, db: Session = Depends(get_db)):
    try:
        return ProductService(db).set_stock(product_id, payload.stock_quantity, payload.note)
    except StorefrontError as e:
        _raise(e)

@protected.post("/products/{product_id}/toggle", response_model=ProductRead)
def toggle_product(product_id: str, db: Session = Depends(get_db)):
    try:
        return ProductService(db).toggle(product_id)
    except StorefrontError as e:
        _raise(e)

@protected.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, db: Session = Depends(get_db)):
    try:
        ProductService(db).delete(product_id)
    except StorefrontError as e:
        _raise(e)
    return Response(status_code=204)

@protected.get("/inventory/transactions", response_model=list[InventoryTransactionRead])
def list_transactions(
    product_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return ProductService(db).transactions(product_id, limit)

# orders

@protected.get("/orders", response_model=list[OrderRead])
def list_orders(status: Optional[OrderStatus] = None, db: Session = Depends(get_db)):
    return OrderService(db).list_orders(status.value if status else None)

@protected.get("/orders/{order_number}", response_model=OrderRead)
def get_order(order_number: str, db: Session = Depends(get_db)):
    try:
        return OrderService(db).get_or_404(order_number)
    except StorefrontError as e:
        _raise(e)

@protected.patch("/orders/{order_number}", response_model=OrderRead)
def update_order_status(order_number: str, payload: OrderStatusUpdate, db: Session = Depends(get_db)):
    try:
        return OrderService(db).update_status(order_number, payload.status)
    except StorefrontError as e:
        _raise(e)

@protected.post("/orders/{order_number}/confirm-crypto", response_model=ConfirmResult)
def confirm_crypto(
    order_number: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    result = PaymentService(db).confirm_crypto_order(order_number)
    if not result.success:
        raise HTTPException(status_code=404, detail="Order not found")
    if result.newly_confirmed:
        order = OrderService(db).get_by_number(order_number)
        background_tasks.add_task(
            notifier.send_order_notification,
            order_email_payload(order),
            payment_confirmation(order.crypto_payment_details),
        )
    return result

@protected.get("/payment-events", response_model=list[PaymentEventRead])
def list_payment_events(unprocessed: bool = False, db: Session = Depends(get_db)):
    return PaymentService(db).list_events(unprocessed=unprocessed)

# discounts

@protected.get("/discounts", response_model=list[DiscountCodeRead])
def list_discounts(db: Session = Depends(get_db)):
    return DiscountService(db).list()

@protected.post("/discounts", response_model=DiscountCodeRead, status_code=201)
def create_discount(payload: DiscountCodeCreate, db: Session = Depends(get_db)):
    try:
        return DiscountService(db).create(payload)
    except StorefrontError as e:
        _raise(e)

@protected.patch("/discounts/{discount_id}", response_model=DiscountCodeRead)
def update_discount(discount_id: str, payload: DiscountCodeUpdate, db: Session = Depends(get_db)):
    try:
        return DiscountService(db).update(discount_id, payload)
    except StorefrontError as e:
        _raise(e)

@protected.post("/discounts/{discount_id}/toggle", response_model=DiscountCodeRead)
def toggle_discount(discount_id: str, db: Session = Depends(get_db)):
    try:
        return DiscountService(db).toggle(discount_id)
    except StorefrontError as e:
        _raise(e)

@protected.delete("/discounts/{discount_id}", status_code=204)
def delete_discount(discount_id: str, db: Session = Depends(get_db)):
    try:
        DiscountService(db).delete(discount_id)
    except StorefrontError as e:
        _raise(e)
    return Response(status_code=204)

@protected.get("/discounts/{discount_id}/stats", response_model=DiscountStats)
def discount_stats(discount_id: str, db: Session = Depends(get_db)):
    try:
        return DiscountService(db).stats(discount_id)
    except StorefrontError as e:
        _raise(e)

router.include_router(protected)
