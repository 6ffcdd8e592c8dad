import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from motorconnect.core.config import settings
from motorconnect.core.security import limiter
from motorconnect.routers import admin_commission_config, fee_preview, payments, promotions, session
from motorconnect.utils.api_client import MarketplaceAPI, MarketplaceAPIError, MarketplaceNetworkError, SessionExpiredError
from motorconnect.utils.api_error_handler import classify_exception, create_error_response, status_code_for

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Storefront gateway for the Motor Connect marketplace: fee previews, payments and promotions.",
    version=settings.VERSION,
)
app.state.limiter = limiter
app.state.marketplace_api = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(SessionExpiredError)
async def session_expired_handler(request: Request, exc: SessionExpiredError):
    # hard navigation back to the login page, dropping the rejected session token
    response = RedirectResponse(url=exc.redirect_to, status_code=303)
    response.delete_cookie(key=settings.SESSION_COOKIE_NAME)
    return response


@app.exception_handler(MarketplaceAPIError)
@app.exception_handler(MarketplaceNetworkError)
async def marketplace_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled marketplace error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code_for(exc),
        content=create_error_response(classify_exception(exc), str(exc)),
    )


@app.on_event("startup")
async def startup_event():
    """
    Opens the shared marketplace API client.
    """
    if app.state.marketplace_api is None:
        app.state.marketplace_api = MarketplaceAPI()
    logger.info(f"Marketplace API at {app.state.marketplace_api.base_url} ({settings.ENVIRONMENT})")


@app.on_event("shutdown")
async def shutdown_event():
    if app.state.marketplace_api is not None:
        await app.state.marketplace_api.aclose()


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(fee_preview.router, prefix="/api/fee-preview", tags=["Fee Preview"])
app.add_api_websocket_route("/ws/fee-preview", fee_preview.fee_preview_socket)
app.include_router(admin_commission_config.router, prefix="/api/admin/commission-config", tags=["Admin - Commission Config"])
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(promotions.router, prefix="/api/promotions", tags=["Promotions"])
app.include_router(promotions.admin_router, prefix="/api/admin/promotions", tags=["Admin - Promotions"])
app.include_router(session.router, prefix="/api/session", tags=["Session"])


# Root endpoint
@app.get("/")
def read_root():
    return {"message": "Welcome to Motor Connect Storefront API"}
