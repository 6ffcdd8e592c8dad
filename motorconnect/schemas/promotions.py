# motorconnect/schemas/promotions.py
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import Field, model_validator

from motorconnect.schemas.commission import CamelModel


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


def _aware(value: datetime) -> datetime:
    # date-only strings from the admin form parse as naive midnight
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PromotionBase(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: DiscountType = Field(DiscountType.PERCENTAGE, alias="discountType")
    discount_value: float = Field(..., alias="discountValue")
    start_date: datetime = Field(..., alias="startDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")
    max_vendors: Optional[int] = Field(None, alias="maxVendors", ge=1)
    is_active: bool = Field(True, alias="isActive")


class CommissionPromotion(PromotionBase):
    id: str

    def is_active_at(self, now: datetime) -> bool:
        now = _aware(now)
        if not self.is_active or now < _aware(self.start_date):
            return False
        return self.end_date is None or now <= _aware(self.end_date)

    @property
    def discount_text(self) -> str:
        value = f"{self.discount_value:g}"
        if self.discount_type == DiscountType.PERCENTAGE:
            return f"{value}% OFF"
        return f"KES {value} OFF"


class PromotionWrite(PromotionBase):
    """Admin create/update payload"""

    @model_validator(mode="after")
    def validate_discount(self):
        if self.discount_value <= 0:
            raise ValueError("Discount value must be greater than zero")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.end_date is not None and _aware(self.end_date) < _aware(self.start_date):
            raise ValueError("End date must be on or after the start date")
        return self

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ActivePromotionResponse(CamelModel):
    promotion: Optional[CommissionPromotion] = None
    discount_text: Optional[str] = Field(None, alias="discountText")
