# motorconnect/routers/session.py
from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field

from motorconnect.core.config import settings

router = APIRouter()


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


@router.post("/token", status_code=status.HTTP_204_NO_CONTENT)
def store_token(data: TokenRequest, response: Response):
    """
    Remember the marketplace token for this browser only.
    It lives in an HttpOnly cookie and is sent on calls without bearer credentials.
    """
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=data.token,
        max_age=settings.SESSION_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


@router.delete("/token", status_code=status.HTTP_204_NO_CONTENT)
def clear_token(response: Response):
    response.delete_cookie(key=settings.SESSION_COOKIE_NAME)
