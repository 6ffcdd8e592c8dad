# motorconnect/utils/commission_service.py

import logging
import math
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from motorconnect.core.config import settings
from motorconnect.schemas.commission import (
    CommissionConfig,
    CommissionConfigListResponse,
    CommissionRuleDefinition,
    CommissionRuleType,
    CreateCommissionConfigRequest,
    FeeBreakdown,
    FeeCalculationResponse,
    Pagination,
    UpdateCommissionConfigRequest,
)
from .api_client import MarketplaceAPI, MarketplaceAPIError, MarketplaceNetworkError, SessionExpiredError
from .api_error_handler import error_message, log_error_context

logger = logging.getLogger(__name__)

COMMISSION_CONFIG_ENDPOINT = "/api/products/commission-config"
CALCULATE_FEES_ENDPOINT = "/api/products/calculate-fees"
CONFIG_PAGE_SIZE = 20


class CommissionServiceError(Exception):
    """Raised when a commission config mutation fails"""
    pass


def apply_commission_rule(
    price: float,
    commission_rate: float,
    rule_type: Union[CommissionRuleType, str],
    min_fee: float,
    max_fee: float,
) -> Tuple[float, float, Optional[float], Optional[float]]:
    """
    Apply a commission rule to a price.

    STANDARD charges rate x price, FLOOR raises it to min_fee and CAP lowers it
    to max_fee. Returns (base_commission, applied_fee, floor_adjustment, cap_adjustment).
    """
    base_commission = price * commission_rate / 100
    applied_fee = base_commission
    floor_adjustment = None
    cap_adjustment = None

    if rule_type == CommissionRuleType.FLOOR and base_commission < min_fee:
        applied_fee = min_fee
        floor_adjustment = min_fee - base_commission
    elif rule_type == CommissionRuleType.CAP and base_commission > max_fee:
        applied_fee = max_fee
        cap_adjustment = max_fee - base_commission

    return base_commission, applied_fee, floor_adjustment, cap_adjustment


def build_fee_breakdown(
    price: float,
    category_slug: str,
    commission_rate: float,
    rule_type: Union[CommissionRuleType, str],
    min_fee: float,
    max_fee: float,
    category_name: Optional[str] = None,
    is_estimate: bool = False,
) -> FeeCalculationResponse:
    base_commission, applied_fee, floor_adjustment, cap_adjustment = apply_commission_rule(
        price, commission_rate, rule_type, min_fee, max_fee
    )
    vat_amount = applied_fee * settings.VAT_RATE / 100
    total_deductions = applied_fee + vat_amount

    return FeeCalculationResponse(
        price=price,
        category_slug=category_slug,
        category_name=category_name or category_slug,
        base_commission=base_commission,
        commission_rate=commission_rate,
        min_fee=min_fee,
        max_fee=max_fee,
        rule_type=rule_type,
        applied_fee=applied_fee,
        vat_amount=vat_amount,
        total_deductions=total_deductions,
        vendor_payout=price - total_deductions,
        breakdown=FeeBreakdown(
            base_commission=base_commission,
            floor_adjustment=floor_adjustment,
            cap_adjustment=cap_adjustment,
            vat_amount=vat_amount,
        ),
        is_estimate=is_estimate,
    )


def calculate_fallback_fees(
    price: float,
    category_slug: str,
    config: Optional[CommissionConfig] = None,
) -> FeeCalculationResponse:
    """
    Local estimate used when the fee API is unavailable.

    Uses the category's own config when one is known, otherwise the default
    8% STANDARD rate (min/max are then shown but not enforced).
    """
    if config is not None:
        return build_fee_breakdown(
            price,
            category_slug,
            config.commission_rate,
            config.rule_type,
            config.min_fee,
            config.max_fee,
            category_name=config.name,
            is_estimate=True,
        )

    return build_fee_breakdown(
        price,
        category_slug,
        settings.DEFAULT_COMMISSION_RATE,
        CommissionRuleType.STANDARD,
        settings.FALLBACK_MIN_FEE,
        settings.FALLBACK_MAX_FEE,
        is_estimate=True,
    )


def _ksh(amount: float) -> str:
    return f"KSh {amount:,.0f}"


def commission_rules_legend(
    commission_rate: float = settings.DEFAULT_COMMISSION_RATE,
    min_fee: float = settings.FALLBACK_MIN_FEE,
    max_fee: float = settings.FALLBACK_MAX_FEE,
) -> List[CommissionRuleDefinition]:
    """Rule definitions with worked examples for the legend"""
    rate = f"{commission_rate:g}%"

    standard_price = 10_000
    standard_base, _, _, _ = apply_commission_rule(
        standard_price, commission_rate, CommissionRuleType.STANDARD, min_fee, max_fee
    )

    floor_price = 500
    floor_base, floor_fee, _, _ = apply_commission_rule(
        floor_price, commission_rate, CommissionRuleType.FLOOR, min_fee, max_fee
    )

    cap_price = 30_000
    cap_base, cap_fee, _, _ = apply_commission_rule(
        cap_price, commission_rate, CommissionRuleType.CAP, min_fee, max_fee
    )

    return [
        CommissionRuleDefinition(
            rule_type=CommissionRuleType.STANDARD,
            title="STANDARD",
            description="Regular percentage-based commission",
            example=f"{rate} of {_ksh(standard_price)} = {_ksh(standard_base)}",
        ),
        CommissionRuleDefinition(
            rule_type=CommissionRuleType.FLOOR,
            title="FLOOR",
            description="Minimum fee applied when commission is below floor",
            example=f"{rate} of {_ksh(floor_price)} = {_ksh(floor_base)}, but floor is {_ksh(min_fee)} = {_ksh(floor_fee)}",
        ),
        CommissionRuleDefinition(
            rule_type=CommissionRuleType.CAP,
            title="CAP",
            description="Maximum fee cap applied when commission exceeds cap",
            example=f"{rate} of {_ksh(cap_price)} = {_ksh(cap_base)}, but cap is {_ksh(max_fee)} = {_ksh(cap_fee)}",
        ),
    ]


def _is_valid_fee_response(response: Any) -> bool:
    if not isinstance(response, dict):
        return False
    price = response.get("price")
    return isinstance(price, (int, float)) and not isinstance(price, bool) and math.isfinite(price)


class CommissionService:
    """
    Commission state for one page session: the fee preview plus the admin
    commission-config list.
    """

    def __init__(self, api: MarketplaceAPI):
        self.api = api

        # Fee preview state
        self.fee_preview: Optional[FeeCalculationResponse] = None
        self.is_calculating_fees = False
        self.fee_error: Optional[str] = None
        self._fee_request_seq = 0

        # Config state
        self.configs: List[CommissionConfig] = []
        self.current_config: Optional[CommissionConfig] = None
        self.is_loading_configs = False
        self.config_error: Optional[str] = None
        self.pagination = Pagination(limit=CONFIG_PAGE_SIZE)

    # Fee preview

    def _known_config(self, category_slug: str) -> Optional[CommissionConfig]:
        candidates = list(self.configs)
        if self.current_config is not None:
            candidates.insert(0, self.current_config)
        for config in candidates:
            if config.category_slug == category_slug and config.is_active:
                return config
        return None

    async def calculate_fees(self, price: float, category_slug: str) -> Optional[FeeCalculationResponse]:
        """
        Fetch the fee breakdown for a price and category.
        Falls back to a local estimate on any API failure. Returns None when the
        preview was cleared or the result was superseded by a newer request.
        """
        self._fee_request_seq += 1
        seq = self._fee_request_seq

        if price <= 0 or not category_slug:
            self.clear_fee_preview()
            return None

        self.is_calculating_fees = True
        self.fee_error = None

        try:
            try:
                response = await self.api.get(
                    CALCULATE_FEES_ENDPOINT,
                    params={"price": price, "categorySlug": category_slug},
                )
                if not _is_valid_fee_response(response):
                    raise ValueError("Invalid response format from fee calculation API")
                preview = FeeCalculationResponse.model_validate(response)
            except (MarketplaceAPIError, MarketplaceNetworkError, SessionExpiredError, ValueError) as e:
                logger.warning(f"Fee calculation API failed, using fallback: {str(e)}")
                preview = calculate_fallback_fees(price, category_slug, self._known_config(category_slug))
        finally:
            if seq == self._fee_request_seq:
                self.is_calculating_fees = False

        if seq != self._fee_request_seq:
            logger.debug(f"Dropping stale fee preview for {category_slug} at {price}")
            return None

        self.fee_preview = preview
        self.fee_error = None
        return preview

    def clear_fee_preview(self) -> None:
        self.fee_preview = None
        self.fee_error = None
        self.is_calculating_fees = False

    def clear_error(self) -> None:
        self.fee_error = None
        self.config_error = None

    # Commission config CRUD

    async def fetch_configs(self, search: str = "", page: int = 1) -> List[CommissionConfig]:
        self.is_loading_configs = True
        self.config_error = None
        params: Dict[str, Any] = {"page": page, "limit": CONFIG_PAGE_SIZE}
        if search:
            params["search"] = search

        try:
            response = await self.api.get(COMMISSION_CONFIG_ENDPOINT, params=params)
            result = CommissionConfigListResponse.model_validate(response)
            self.configs = result.configs
            self.pagination = result.pagination
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("fetch_configs", e, {"search": search, "page": page})
            self.config_error = error_message(e, "Failed to fetch commission configs")
        finally:
            self.is_loading_configs = False
        return self.configs

    async def fetch_config(self, config_id: str) -> Optional[CommissionConfig]:
        self.is_loading_configs = True
        self.config_error = None
        try:
            response = await self.api.get(f"{COMMISSION_CONFIG_ENDPOINT}/{config_id}")
            self.current_config = CommissionConfig.model_validate(response)
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("fetch_config", e, {"config_id": config_id})
            self.config_error = error_message(e, "Failed to fetch commission config")
        finally:
            self.is_loading_configs = False
        return self.current_config

    async def _mutate(self, operation: str, fallback: str, call) -> Any:
        self.is_loading_configs = True
        self.config_error = None
        try:
            return await call()
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context(operation, e)
            message = error_message(e, fallback)
            self.config_error = message
            raise CommissionServiceError(message) from e
        finally:
            self.is_loading_configs = False

    async def create_config(
        self, data: Union[CreateCommissionConfigRequest, Dict[str, Any]]
    ) -> CommissionConfig:
        async def call():
            request = CreateCommissionConfigRequest.model_validate(data)
            response = await self.api.post(
                COMMISSION_CONFIG_ENDPOINT,
                request.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
            return CommissionConfig.model_validate(response)

        config = await self._mutate("create_config", "Failed to create commission config", call)
        self.configs = [config] + self.configs
        return config

    async def update_config(
        self, config_id: str, data: Union[UpdateCommissionConfigRequest, Dict[str, Any]]
    ) -> CommissionConfig:
        async def call():
            request = UpdateCommissionConfigRequest.model_validate(data)
            response = await self.api.put(
                f"{COMMISSION_CONFIG_ENDPOINT}/{config_id}",
                request.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
            return CommissionConfig.model_validate(response)

        config = await self._mutate("update_config", "Failed to update commission config", call)
        self.configs = [config if c.id == config_id else c for c in self.configs]
        if self.current_config is not None and self.current_config.id == config_id:
            self.current_config = config
        return config

    async def delete_config(self, config_id: str) -> None:
        async def call():
            await self.api.delete(f"{COMMISSION_CONFIG_ENDPOINT}/{config_id}")

        await self._mutate("delete_config", "Failed to delete commission config", call)
        self.configs = [c for c in self.configs if c.id != config_id]
        if self.current_config is not None and self.current_config.id == config_id:
            self.current_config = None
