from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime

from config.constants import GIFT_CARD_MAX_BULK
from models.common import to_naive_utc


class GiftCardCreate(BaseModel):
    amount: float = Field(..., gt=0)
    purchased_by: Optional[str] = None
    expiry_date: Optional[datetime] = None
    template_id: Optional[str] = None
    recipient_name: Optional[str] = Field(None, max_length=120)
    recipient_email: Optional[EmailStr] = None
    custom_message: Optional[str] = Field(None, max_length=500)
    scheduled_delivery_date: Optional[datetime] = None

    @field_validator("expiry_date", "scheduled_delivery_date")
    @classmethod
    def naive_dates(cls, v):
        return to_naive_utc(v)


class GiftCardBulkCreate(BaseModel):
    count: int = Field(..., gt=0, le=GIFT_CARD_MAX_BULK)
    amount: float = Field(..., gt=0)
    expiry_date: Optional[datetime] = None
    template_id: Optional[str] = None

    @field_validator("expiry_date")
    @classmethod
    def naive_dates(cls, v):
        return to_naive_utc(v)


class GiftCardRedeem(BaseModel):
    code: str = Field(..., min_length=4)
    amount: float = Field(..., gt=0)
    order_id: Optional[str] = None
