"""Coinbase Commerce: hosted charge creation and webhook signature checks."""

from decimal import Decimal
from typing import Any, Dict, Optional
import hashlib
import hmac
import httpx

from darktides.core import get_logger
from darktides.application.errors import PaymentProviderError

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-CC-Webhook-Signature"

def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 hex digest of the raw request body, compared in constant time."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8", "replace"))

class CoinbaseCommerceClient:
    def __init__(self, settings, transport: Optional[httpx.BaseTransport] = None, timeout: float = 10.0):
        self.settings = settings
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.settings.COINBASE_API_URL,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "X-CC-Api-Key": self.settings.COINBASE_COMMERCE_API_KEY,
                "X-CC-Version": self.settings.COINBASE_API_VERSION,
                "Content-Type": "application/json",
            },
        )

    def charge_payload(self, order_number: str, amount: Decimal, customer_email: str,
                       customer_name: str, items: Optional[list] = None) -> Dict[str, Any]:
        site = self.settings.SITE_URL.rstrip("/")
        return {
            "name": f"Order {order_number}",
            "description": f"DarkTides Research - Order {order_number}",
            "pricing_type": "fixed_price",
            "local_price": {"amount": f"{Decimal(str(amount)):.2f}", "currency": "USD"},
            "metadata": {
                "order_number": order_number,
                "customer_email": customer_email,
                "customer_name": customer_name,
                "items": items or [],
            },
            "redirect_url": f"{site}/order-complete?order={order_number}",
            "cancel_url": f"{site}/checkout",
        }

    def create_charge(self, order_number: str, amount: Decimal, customer_email: str,
                      customer_name: str, items: Optional[list] = None) -> Dict[str, Optional[str]]:
        """
        Create a fixed-price hosted charge.

        Returns the charge code, hosted checkout URL and expiry. Any transport
        or API failure surfaces as PaymentProviderError.
        """
        if not self.settings.COINBASE_COMMERCE_API_KEY:
            raise PaymentProviderError("Coinbase Commerce API key is not configured")

        payload = self.charge_payload(order_number, amount, customer_email, customer_name, items)
        try:
            with self._client() as client:
                response = client.post("/charges", json=payload)
            response.raise_for_status()
            data = response.json().get("data") or {}
        except httpx.HTTPStatusError as e:
            logger.error(f"Coinbase charge for {order_number} rejected: HTTP {e.response.status_code}")
            raise PaymentProviderError(f"charge rejected with {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Coinbase charge for {order_number} failed: {e}")
            raise PaymentProviderError(str(e)) from e

        if not data.get("code") or not data.get("hosted_url"):
            raise PaymentProviderError("charge response missing code or hosted_url")

        logger.info(f"Coinbase charge {data['code']} created for {order_number}")
        return {
            "code": data["code"],
            "hosted_url": data["hosted_url"],
            "expires_at": data.get("expires_at"),
        }
