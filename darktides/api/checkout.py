from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from sqlalchemy.orm import Session
from typing import Optional
from darktides.core_settings import get_settings, Settings
from darktides.infrastructure.db import get_db
from darktides.application.checkout import CheckoutService
from darktides.application.inventory import InventoryService
from darktides.application.orders import OrderService
from darktides.application.errors import GENERIC_UNAVAILABLE, NotFoundError, OrderValidationError, PaymentProviderError
from darktides.application.schemas import (
    CartValidationRequest, CartValidationResult, CheckoutRequest, CheckoutResult,
    CryptoRedirect, OrderStatusRead, Quote, QuoteRequest,
)
from .deps import get_notifier, get_payment_gateway, session_id_header

router = APIRouter(tags=["checkout"])

def get_checkout_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    payments=Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
) -> CheckoutService:
    return CheckoutService(db, notifier, payments, settings, dispatch=background_tasks.add_task)

@router.post("/checkout/validate", response_model=CartValidationResult)
def validate_cart(
    payload: CartValidationRequest,
    session_id: Optional[str] = Depends(session_id_header),
    db: Session = Depends(get_db),
):
    return InventoryService(db).validate_cart(payload.items, session_id=session_id)

@router.post("/checkout/quote", response_model=Quote)
def quote(payload: QuoteRequest, checkout: CheckoutService = Depends(get_checkout_service)):
    result = checkout.quote(payload.items, payload.discount_code)
    if result is None:
        raise HTTPException(status_code=409, detail=GENERIC_UNAVAILABLE)
    return result

@router.post("/checkout/orders", response_model=CheckoutResult)
def place_order(
    payload: CheckoutRequest,
    response: Response,
    session_id: Optional[str] = Depends(session_id_header),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    result = checkout.place_order(session_id, payload)
    if result.success:
        response.status_code = 201
    elif result.order_number:
        # order exists, only the payment provider call failed
        response.status_code = 502
    else:
        response.status_code = 409
    return result

@router.post("/checkout/orders/{order_number}/charge", response_model=CryptoRedirect)
def retry_charge(order_number: str, checkout: CheckoutService = Depends(get_checkout_service)):
    try:
        return checkout.create_charge(order_number)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.public_message)
    except OrderValidationError as e:
        raise HTTPException(status_code=400, detail=e.public_message)
    except PaymentProviderError as e:
        raise HTTPException(status_code=502, detail=e.public_message)

@router.get("/orders/{order_number}/status", response_model=OrderStatusRead)
def order_status(order_number: str, db: Session = Depends(get_db)):
    status = OrderService(db).payment_status(order_number)
    if not status:
        raise HTTPException(status_code=404, detail="Order not found")
    return status
