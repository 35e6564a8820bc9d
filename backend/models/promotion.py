from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime
from enum import Enum

from models.common import to_naive_utc


class PromotionType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    BUY_X_GET_Y = "buy_x_get_y"
    FREE_SHIPPING = "free_shipping"
    BUNDLE = "bundle"


class ApplicableTo(str, Enum):
    ALL = "all"
    CATEGORY = "category"
    PRODUCT = "product"
    SELLER = "seller"


class CartItem(BaseModel):
    product_id: str
    category_id: Optional[str] = None
    seller_id: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., gt=0)


class PromotionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    seller_id: Optional[str] = None

    type: PromotionType
    discount_value: Optional[float] = Field(None, ge=0)
    min_purchase_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)

    applicable_to: ApplicableTo = ApplicableTo.ALL
    applicable_ids: List[str] = []

    coupon_code: Optional[str] = Field(None, min_length=3, max_length=40)
    usage_limit: Optional[int] = Field(None, gt=0)
    user_limit: Optional[int] = Field(None, gt=0)

    start_date: datetime
    end_date: datetime
    is_active: bool = True

    @field_validator("coupon_code")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper() if v else v

    @field_validator("start_date", "end_date")
    @classmethod
    def naive_dates(cls, v):
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_rules(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if self.type == PromotionType.PERCENTAGE and (self.discount_value or 0) > 100:
            raise ValueError("percentage discount cannot exceed 100")
        if self.type in {PromotionType.PERCENTAGE, PromotionType.FIXED} and not self.discount_value:
            raise ValueError("discount_value is required for this promotion type")
        return self


class PromotionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_purchase_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    applicable_to: Optional[ApplicableTo] = None
    applicable_ids: Optional[List[str]] = None
    usage_limit: Optional[int] = Field(None, gt=0)
    user_limit: Optional[int] = Field(None, gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def naive_dates(cls, v):
        return to_naive_utc(v)
