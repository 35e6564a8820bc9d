from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class PointsTransactionType(str, Enum):
    PURCHASE = "purchase"
    REVIEW = "review"
    REFERRAL = "referral"
    SIGNUP = "signup"
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"
    EVENT = "event"
    REDEMPTION = "redemption"
    EXPIRY = "expiry"


EARN_TYPES = {
    PointsTransactionType.PURCHASE.value,
    PointsTransactionType.REVIEW.value,
    PointsTransactionType.REFERRAL.value,
    PointsTransactionType.SIGNUP.value,
    PointsTransactionType.BIRTHDAY.value,
    PointsTransactionType.ANNIVERSARY.value,
    PointsTransactionType.EVENT.value,
}

SPEND_TYPES = {
    PointsTransactionType.REDEMPTION.value,
    PointsTransactionType.EXPIRY.value,
}


class RewardType(str, Enum):
    DISCOUNT = "discount"
    FREE_SHIPPING = "free_shipping"
    PRODUCT = "product"
    CASHBACK = "cashback"


class LoyaltyProgramUpsert(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    points_per_currency: float = Field(1, gt=0)
    birthday_reward_points: int = Field(0, ge=0)
    anniversary_reward_points: int = Field(0, ge=0)
    is_active: bool = True


class RewardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    reward_type: RewardType
    reward_value: float = Field(..., ge=0)
    points_required: int = Field(..., gt=0)
    is_active: bool = True


class EventBonus(BaseModel):
    user_ids: list[str] = Field(..., min_length=1)
    event_name: str = Field(..., min_length=1, max_length=120)
    points: int = Field(..., gt=0)
