from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import Optional

from database import get_db
from config.constants import ROLE_CUSTOMER
from utils.checkout import calculate_checkout_summary
from utils.responses import success_response
from utils.security import require_role

router = APIRouter(prefix="/api/checkout", tags=["Checkout"])


class CheckoutSummaryRequest(BaseModel):
    coupon_code: Optional[str] = None
    gift_card_code: Optional[str] = None
    points_to_redeem: int = Field(0, ge=0)


@router.post("/summary")
async def checkout_summary(
    data: CheckoutSummaryRequest,
    buyer=Depends(require_role(ROLE_CUSTOMER)),
    db=Depends(get_db),
):
    summary = await calculate_checkout_summary(
        db,
        buyer,
        coupon_code=data.coupon_code,
        gift_card_code=data.gift_card_code,
        points_to_redeem=data.points_to_redeem,
    )
    return success_response(summary)
