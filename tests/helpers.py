import hashlib
import hmac
import json
import os

from darktides.domain.models import Product
from darktides.infrastructure.db import SessionLocal

WEBHOOK_SECRET = os.environ["COINBASE_WEBHOOK_SECRET"]

def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

def webhook_body(event_id, event_type, charge_code, order_number=None, payments=None) -> bytes:
    data = {
        "code": charge_code,
        "metadata": {"order_number": order_number} if order_number else {},
        "payments": payments if payments is not None else [
            {"network": "ethereum", "transaction_id": "0xabc123", "status": "CONFIRMED"}
        ],
        "timeline": [{"status": "NEW"}, {"status": "COMPLETED"}],
        "confirmed_at": "2024-05-01T12:00:00Z",
    }
    return json.dumps({"event": {"id": event_id, "type": event_type, "data": data}}).encode()

def product_state(product_id):
    session = SessionLocal()
    try:
        product = session.get(Product, product_id)
        return product.stock_quantity, product.reserved_quantity
    finally:
        session.close()
