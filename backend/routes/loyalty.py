from fastapi import APIRouter, Depends, Query
from typing import Optional

from database import get_db
from config.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from models.loyalty import EventBonus, LoyaltyProgramUpsert, PointsTransactionType, RewardCreate
from utils.audit import log_audit
from utils.guards import clamp_pagination
from utils.loyalty import (
    award_special_event_bonus,
    create_reward,
    get_available_rewards,
    get_loyalty_program,
    get_points_transactions,
    get_user_points,
    redeem_reward,
    upsert_loyalty_program,
)
from utils.responses import paginated, success_response
from utils.security import get_current_user, require_admin

router = APIRouter(
    prefix="/api/loyalty",
    tags=["Loyalty"]
)

admin_router = APIRouter(
    prefix="/api/admin/loyalty",
    tags=["Admin Loyalty"]
)

# -------------------------------------------------
# CUSTOMER
# -------------------------------------------------

@router.get("/points")
async def my_points(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    balance = await get_user_points(db, user["_id"])
    return success_response({
        "points": balance["points"],
        "total_earned": balance["total_earned"],
        "total_spent": balance["total_spent"],
    })


@router.get("/transactions")
async def my_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    type: Optional[PointsTransactionType] = None,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    page, limit, skip = clamp_pagination(page, limit, MAX_PAGE_SIZE)
    items, total = await get_points_transactions(
        db,
        user["_id"],
        skip=skip,
        limit=limit,
        type=type.value if type else None,
    )
    return success_response(paginated(items, page=page, limit=limit, total=total))


@router.get("/program")
async def loyalty_program(db=Depends(get_db)):
    return success_response(await get_loyalty_program(db))


@router.get("/rewards")
async def rewards(db=Depends(get_db)):
    return success_response(await get_available_rewards(db))


@router.post("/rewards/{reward_id}/redeem")
async def redeem(
    reward_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    result = await redeem_reward(db, user["_id"], reward_id)
    return success_response(result, "Reward redeemed / Mükafat istifadə edildi")


# -------------------------------------------------
# ADMIN
# -------------------------------------------------

@admin_router.put("/program")
async def admin_upsert_program(
    data: LoyaltyProgramUpsert,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    program = await upsert_loyalty_program(db, data.model_dump())

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="LOYALTY_PROGRAM_UPDATED",
        metadata=data.model_dump(),
    )

    return success_response(program, "Loyalty program saved / Sədaqət proqramı yadda saxlanıldı")


@admin_router.post("/rewards")
async def admin_create_reward(
    data: RewardCreate,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    payload = data.model_dump()
    payload["reward_type"] = data.reward_type.value

    reward = await create_reward(db, payload)
    return success_response(reward, "Reward created / Mükafat yaradıldı")


@admin_router.post("/events/{event_id}/award")
async def admin_award_event(
    event_id: str,
    data: EventBonus,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    results = {}
    for user_id in data.user_ids:
        results[user_id] = await award_special_event_bonus(
            db, user_id, event_id, data.event_name, data.points
        )

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="LOYALTY_EVENT_BONUS",
        metadata={"event_id": event_id, "users": len(data.user_ids), "points": data.points},
    )

    awarded = sum(1 for r in results.values() if r["awarded"])
    return success_response({"awarded": awarded, "results": results})
