from typing import Optional
import httpx

from darktides.core import get_logger
from darktides.application.errors import NotificationError

logger = get_logger(__name__)

class ResendClient:
    """Minimal Resend email API client; one POST /emails per message."""

    def __init__(self, settings, transport: Optional[httpx.BaseTransport] = None, timeout: float = 10.0):
        self.settings = settings
        self.transport = transport
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str, reply_to: Optional[str] = None) -> str:
        if not self.settings.RESEND_API_KEY:
            raise NotificationError("Resend API key is not configured")
        if not to:
            raise NotificationError("no recipient configured")

        payload = {
            "from": self.settings.EMAIL_FROM,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            with httpx.Client(
                base_url=self.settings.RESEND_API_URL,
                timeout=self.timeout,
                transport=self.transport,
                headers={"Authorization": f"Bearer {self.settings.RESEND_API_KEY}"},
            ) as client:
                response = client.post("/emails", json=payload)
            response.raise_for_status()
            message_id = response.json().get("id", "") if response.content else ""
        except httpx.HTTPStatusError as e:
            raise NotificationError(f"Resend rejected message: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"Resend request failed: {e}") from e

        logger.info(f"Email sent: {subject}", extra={'extra_fields': {'message_id': message_id}})
        return message_id
