# motorconnect/schemas/commission.py
import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CommissionRuleType(str, Enum):
    STANDARD = "STANDARD"
    FLOOR = "FLOOR"
    CAP = "CAP"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)


def _check_fee_bounds(model):
    if model.min_fee is not None and model.min_fee < 0:
        raise ValueError("Minimum fee cannot be negative")
    if model.max_fee is not None and model.min_fee is not None and model.max_fee < model.min_fee:
        raise ValueError("Maximum fee must be greater than or equal to minimum fee")
    return model


class CommissionConfig(CamelModel):
    id: str
    name: str
    category_slug: str = Field(..., alias="categorySlug")
    commission_rate: float = Field(..., alias="commissionRate", description="Percentage, e.g. 8.5 for 8.5%")
    min_fee: float = Field(0, alias="minFee", description="Floor value in KES")
    max_fee: float = Field(0, alias="maxFee", description="Cap value in KES")
    rule_type: CommissionRuleType = Field(CommissionRuleType.STANDARD, alias="ruleType")
    is_active: bool = Field(True, alias="isActive")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class CreateCommissionConfigRequest(CamelModel):
    name: str
    slug: str
    commission_rate: Optional[float] = Field(None, alias="commissionRate")
    min_fee: Optional[float] = Field(None, alias="minFee")
    max_fee: Optional[float] = Field(None, alias="maxFee")
    rule_type: Optional[CommissionRuleType] = Field(None, alias="ruleType")
    parent_id: Optional[str] = Field(None, alias="parentId")

    @field_validator("name")
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name is required")
        return v

    @field_validator("slug")
    def validate_slug(cls, v):
        if not v.strip():
            raise ValueError("Slug is required")
        if not re.fullmatch(r"[a-z0-9-]+", v):
            raise ValueError("Slug must contain only lowercase letters, numbers, and hyphens")
        return v

    @field_validator("commission_rate")
    def validate_rate(cls, v):
        if v is not None and (v < 0 or v > 100):
            raise ValueError("Rate must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def validate_fees(self):
        return _check_fee_bounds(self)


class UpdateCommissionConfigRequest(CamelModel):
    commission_rate: Optional[float] = Field(None, alias="commissionRate")
    min_fee: Optional[float] = Field(None, alias="minFee")
    max_fee: Optional[float] = Field(None, alias="maxFee")
    rule_type: Optional[CommissionRuleType] = Field(None, alias="ruleType")
    is_active: Optional[bool] = Field(None, alias="isActive")

    @field_validator("commission_rate")
    def validate_rate(cls, v):
        if v is not None and (v < 0 or v > 100):
            raise ValueError("Rate must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def validate_fees(self):
        return _check_fee_bounds(self)


class Pagination(BaseModel):
    page: int = 1
    limit: int = 20
    total: int = 0
    pages: int = 0


class CommissionConfigListResponse(BaseModel):
    configs: List[CommissionConfig] = []
    pagination: Pagination = Pagination()


class FeeBreakdown(CamelModel):
    base_commission: float = Field(..., alias="baseCommission")
    floor_adjustment: Optional[float] = Field(None, alias="floorAdjustment")
    cap_adjustment: Optional[float] = Field(None, alias="capAdjustment")
    vat_amount: float = Field(..., alias="vatAmount")


class FeeCalculationResponse(CamelModel):
    price: float
    category_slug: str = Field(..., alias="categorySlug")
    category_name: str = Field(..., alias="categoryName")
    base_commission: float = Field(..., alias="baseCommission")
    commission_rate: float = Field(..., alias="commissionRate")
    min_fee: float = Field(..., alias="minFee")
    max_fee: float = Field(..., alias="maxFee")
    rule_type: CommissionRuleType = Field(..., alias="ruleType")
    applied_fee: float = Field(..., alias="appliedFee")
    vat_amount: float = Field(..., alias="vatAmount")
    total_deductions: float = Field(..., alias="totalDeductions")
    vendor_payout: float = Field(..., alias="vendorPayout")
    breakdown: FeeBreakdown
    is_estimate: bool = Field(False, alias="isEstimate", description="True when computed locally because the API failed")


class CommissionRuleDefinition(BaseModel):
    rule_type: CommissionRuleType
    title: str
    description: str
    example: str

