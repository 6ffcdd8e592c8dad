# motorconnect/utils/promotion_service.py

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import TypeAdapter, ValidationError

from motorconnect.schemas.promotions import CommissionPromotion, PromotionWrite
from .api_client import MarketplaceAPI, MarketplaceAPIError, MarketplaceNetworkError
from .api_error_handler import error_message, log_error_context

logger = logging.getLogger(__name__)

PROMOTIONS_ENDPOINT = "/api/promotions"

_promotion_list = TypeAdapter(List[CommissionPromotion])


class PromotionServiceError(Exception):
    """Raised when an admin promotion call fails"""
    pass


def select_active_promotion(
    promotions: List[CommissionPromotion], now: Optional[datetime] = None
) -> Optional[CommissionPromotion]:
    """
    First promotion, in list order, that is flagged active and whose date range
    contains `now`. List order is the precedence when several overlap.
    """
    now = now or datetime.now(timezone.utc)
    for promotion in promotions:
        if promotion.is_active_at(now):
            return promotion
    return None


class PromotionService:
    """Commission-discount promotions: public banner selection and admin CRUD"""

    def __init__(self, api: MarketplaceAPI):
        self.api = api
        self.promotions: List[CommissionPromotion] = []
        self.is_loading = False
        self.error: Optional[str] = None

    async def fetch_promotions(self) -> List[CommissionPromotion]:
        self.is_loading = True
        self.error = None
        try:
            response = await self.api.get(f"{PROMOTIONS_ENDPOINT}/public")
            self.promotions = _promotion_list.validate_python(response or [])
            logger.debug(f"Fetched {len(self.promotions)} public promotions")
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("fetch_promotions", e)
            self.error = error_message(e, "Failed to fetch promotions")
        finally:
            self.is_loading = False
        return self.promotions

    def get_active_promotion(self, now: Optional[datetime] = None) -> Optional[CommissionPromotion]:
        if not self.promotions:
            return None
        return select_active_promotion(self.promotions, now)

    # Admin

    async def list_promotions(self) -> List[CommissionPromotion]:
        try:
            response = await self.api.get(PROMOTIONS_ENDPOINT)
            return _promotion_list.validate_python(response or [])
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("list_promotions", e)
            raise PromotionServiceError(error_message(e, "Failed to fetch promotions")) from e

    async def create_promotion(self, data: Union[PromotionWrite, Dict[str, Any]]) -> CommissionPromotion:
        promotion = PromotionWrite.model_validate(data)
        try:
            response = await self.api.post(PROMOTIONS_ENDPOINT, promotion.to_payload())
            return CommissionPromotion.model_validate(response)
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("create_promotion", e)
            raise PromotionServiceError(error_message(e, "Failed to save promotion")) from e

    async def update_promotion(
        self, promotion_id: str, data: Union[PromotionWrite, Dict[str, Any]]
    ) -> CommissionPromotion:
        promotion = PromotionWrite.model_validate(data)
        try:
            response = await self.api.put(f"{PROMOTIONS_ENDPOINT}/{promotion_id}", promotion.to_payload())
            return CommissionPromotion.model_validate(response)
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("update_promotion", e, {"promotion_id": promotion_id})
            raise PromotionServiceError(error_message(e, "Failed to save promotion")) from e

    async def delete_promotion(self, promotion_id: str) -> None:
        try:
            await self.api.delete(f"{PROMOTIONS_ENDPOINT}/{promotion_id}")
        except (MarketplaceAPIError, MarketplaceNetworkError) as e:
            log_error_context("delete_promotion", e, {"promotion_id": promotion_id})
            raise PromotionServiceError(error_message(e, "Failed to delete promotion")) from e
        self.promotions = [p for p in self.promotions if p.id != promotion_id]
