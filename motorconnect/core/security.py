# motorconnect/core/security.py
from typing import Optional

from fastapi import Depends, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address

from motorconnect.core.config import settings

limiter = Limiter(key_func=get_remote_address)

bearer_scheme = HTTPBearer(auto_error=False)


def get_bearer_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """
    Token of the calling client: the Authorization header, else its own
    session cookie. None means the call goes out anonymous.
    """
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(settings.SESSION_COOKIE_NAME) or None


def get_websocket_token(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return websocket.query_params.get("token") or websocket.cookies.get(settings.SESSION_COOKIE_NAME) or None
