from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import Optional

from database import get_db
from config.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from models.common import to_naive_utc
from models.gift_card import GiftCardBulkCreate, GiftCardCreate, GiftCardRedeem
from utils.audit import log_audit
from utils.gift_cards import (
    bulk_create_gift_cards,
    create_gift_card,
    get_expiring_gift_cards,
    get_gift_card_analytics,
    get_gift_card_transactions,
    get_scheduled_gift_cards,
    get_user_gift_cards,
    mark_gift_card_delivered,
    redeem_gift_card,
    validate_gift_card,
)
from utils.guards import clamp_pagination
from utils.rate_limit import rate_limit
from utils.responses import paginated, success_response
from utils.security import get_current_user, require_admin

router = APIRouter(
    prefix="/api/gift-cards",
    tags=["Gift Cards"]
)

admin_router = APIRouter(
    prefix="/api/admin/gift-cards",
    tags=["Admin Gift Cards"]
)

# -------------------------------------------------
# CUSTOMER
# -------------------------------------------------

@router.get("/mine")
async def my_gift_cards(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    return success_response(await get_user_gift_cards(db, user["_id"]))


@router.get("/{code}/balance")
async def gift_card_balance(
    code: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    await rate_limit(db, f"gift_card_check:{user['_id']}", 10, 60)

    result = await validate_gift_card(db, code)
    if not result["is_valid"]:
        return success_response({"is_valid": False, "error": result["error"]})

    card = result["gift_card"]
    return success_response({
        "is_valid": True,
        "code": card["code"],
        "balance": card["balance"],
        "expiry_date": card.get("expiry_date"),
    })


@router.post("/redeem")
async def redeem(
    data: GiftCardRedeem,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    await rate_limit(db, f"gift_card_redeem:{user['_id']}", 10, 60)

    result = await redeem_gift_card(db, data.code, user["_id"], data.amount, data.order_id)
    return success_response({
        "code": result["gift_card"]["code"],
        "amount_redeemed": result["amount_redeemed"],
        "remaining_balance": result["remaining_balance"],
    }, "Gift card redeemed / Hədiyyə kartı istifadə edildi")


# -------------------------------------------------
# ADMIN
# -------------------------------------------------

@admin_router.post("")
async def admin_issue_gift_card(
    data: GiftCardCreate,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    card = await create_gift_card(db, data.amount, **data.model_dump(exclude={"amount"}))

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="GIFT_CARD_ISSUED",
        metadata={"gift_card_id": str(card["_id"]), "amount": card["amount"]},
    )

    return success_response(card, "Gift card created / Hədiyyə kartı yaradıldı")


@admin_router.post("/bulk")
async def admin_bulk_create(
    data: GiftCardBulkCreate,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    cards = await bulk_create_gift_cards(db, data.count, data.amount, data.expiry_date, data.template_id)

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="GIFT_CARD_BULK_CREATED",
        metadata={"count": len(cards), "amount": data.amount},
    )

    return success_response({"count": len(cards), "gift_cards": cards})


@admin_router.get("")
async def admin_list_gift_cards(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    is_active: Optional[bool] = None,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    page, limit, skip = clamp_pagination(page, limit, MAX_PAGE_SIZE)

    query = {}
    if is_active is not None:
        query["is_active"] = is_active

    items = await db.gift_cards.find(query).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.gift_cards.count_documents(query)
    return success_response(paginated(items, page=page, limit=limit, total=total))


@admin_router.get("/analytics")
async def admin_analytics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    return success_response(
        await get_gift_card_analytics(db, to_naive_utc(start_date), to_naive_utc(end_date))
    )


@admin_router.get("/scheduled")
async def admin_scheduled(
    delivery_date: Optional[datetime] = None,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    return success_response(await get_scheduled_gift_cards(db, to_naive_utc(delivery_date)))


@admin_router.get("/expiring")
async def admin_expiring(
    days_ahead: int = Query(30, ge=1, le=365),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    return success_response(await get_expiring_gift_cards(db, days_ahead))


@admin_router.post("/{gift_card_id}/deliver")
async def admin_mark_delivered(
    gift_card_id: str,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    card = await mark_gift_card_delivered(db, gift_card_id)
    return success_response(card, "Gift card marked as delivered / Hədiyyə kartı çatdırılmış kimi qeyd edildi")


@admin_router.get("/{gift_card_id}/transactions")
async def admin_transactions(
    gift_card_id: str,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    return success_response(await get_gift_card_transactions(db, gift_card_id))
