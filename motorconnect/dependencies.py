# motorconnect/dependencies.py
from typing import Optional

from fastapi import Depends, Request

from motorconnect.core.security import get_bearer_token
from motorconnect.utils.api_client import MarketplaceAPI
from motorconnect.utils.commission_service import CommissionService
from motorconnect.utils.payment_service import PaymentService
from motorconnect.utils.promotion_service import PromotionService


def get_marketplace_api(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
) -> MarketplaceAPI:
    api: MarketplaceAPI = request.app.state.marketplace_api
    return api.bind_token(token)


# Services hold per-page state, so each request gets its own instance
def get_commission_service(api: MarketplaceAPI = Depends(get_marketplace_api)) -> CommissionService:
    return CommissionService(api)


def get_payment_service(api: MarketplaceAPI = Depends(get_marketplace_api)) -> PaymentService:
    return PaymentService(api)


def get_promotion_service(api: MarketplaceAPI = Depends(get_marketplace_api)) -> PromotionService:
    return PromotionService(api)
