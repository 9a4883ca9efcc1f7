from fastapi import Depends, Header, HTTPException, Request
from typing import Optional

from darktides.core_settings import get_settings, Settings
from darktides.application.notifications import Notifier
from darktides.infrastructure.coinbase import CoinbaseCommerceClient
from darktides.infrastructure.resend import ResendClient
from .auth_local import decode_access_token

BEARER_PREFIX = "Bearer "

def get_notifier(settings: Settings = Depends(get_settings)) -> Notifier:
    return Notifier(settings, ResendClient(settings))

def get_payment_gateway(settings: Settings = Depends(get_settings)) -> CoinbaseCommerceClient:
    return CoinbaseCommerceClient(settings)

def session_id_header(x_session_id: Optional[str] = Header(None, max_length=100)) -> Optional[str]:
    return x_session_id or None

def require_session(session_id: Optional[str] = Depends(session_id_header)) -> str:
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing X-Session-ID header")
    return session_id

def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> dict:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = decode_access_token(auth_header.split(" ", 1)[1], settings)
    if not token_data or token_data.get("role") != "admin":
        raise HTTPException(status_code=401, detail="Invalid token")
    return token_data
