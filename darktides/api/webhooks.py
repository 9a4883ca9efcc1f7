from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import json
from darktides.core import get_logger
from darktides.core_settings import get_settings, Settings
from darktides.infrastructure.db import get_db
from darktides.infrastructure.coinbase import SIGNATURE_HEADER, verify_signature
from darktides.application.notifications import order_email_payload
from darktides.application.orders import OrderService
from darktides.application.payments import PaymentService, payment_confirmation
from darktides.application.schemas import WebhookEvent
from .deps import get_notifier

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)

@router.post("/coinbase")
async def coinbase_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    if not settings.COINBASE_WEBHOOK_SECRET:
        logger.error("Coinbase webhook secret is not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    raw_body = await request.body()
    if not verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), settings.COINBASE_WEBHOOK_SECRET):
        logger.warning("Rejected webhook with missing or invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = json.loads(raw_body)["event"]
        WebhookEvent.model_validate(event)
    except ValidationError as e:
        logger.warning(f"Rejected webhook with malformed event: {e.error_count()} errors")
        raise HTTPException(status_code=400, detail="Malformed payload")
    except (ValueError, KeyError, TypeError):
        raise HTTPException(status_code=400, detail="Malformed payload")

    result = await run_in_threadpool(PaymentService(db).handle_event, event)
    if result.newly_confirmed:
        order = await run_in_threadpool(OrderService(db).get_by_number, result.order_number)
        payload = await run_in_threadpool(order_email_payload, order)
        background_tasks.add_task(
            notifier.send_order_notification,
            payload,
            payment_confirmation(order.crypto_payment_details),
        )
    return {"received": True, "processed": result.success, "message": result.message}
