from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class CommissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PaymentSchedule(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class AffiliateProgramUpsert(BaseModel):
    commission_rate: Optional[float] = Field(None, gt=0, le=1)
    is_active: Optional[bool] = None
    min_payout: Optional[float] = Field(None, ge=0)

    multi_tier_enabled: Optional[bool] = None
    tier2_commission_rate: Optional[float] = Field(None, ge=0, le=1)
    tier3_commission_rate: Optional[float] = Field(None, ge=0, le=1)

    payment_schedule: Optional[PaymentSchedule] = None
    # weekday 0=Sunday..6 for weekly, day of month for monthly
    payment_day: Optional[int] = Field(None, ge=0, le=31)


class AffiliateLinkCreate(BaseModel):
    product_id: Optional[str] = None


class ReferralCreate(BaseModel):
    referrer_id: str
