from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from typing import List, Optional

from database import get_db
from config.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from models.promotion import ApplicableTo, CartItem, PromotionCreate, PromotionUpdate
from utils.audit import log_audit
from utils.errors import NotFoundError
from utils.guards import clamp_pagination, parse_object_id
from utils.promotions import (
    create_promotion,
    find_best_promotion,
    get_active_promotions,
    list_promotions,
    update_promotion,
    validate_coupon_code,
)
from utils.rate_limit import rate_limit
from utils.responses import paginated, success_response
from utils.security import get_current_user, require_admin

router = APIRouter(
    prefix="/api/promotions",
    tags=["Promotions"]
)

admin_router = APIRouter(
    prefix="/api/admin/promotions",
    tags=["Admin Promotions"]
)

# -------------------------------------------------
# SCHEMAS
# -------------------------------------------------

class CouponCheck(BaseModel):
    code: str = Field(..., min_length=1)
    items: List[CartItem] = Field(..., min_length=1)


class BestPromotionCheck(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    coupon_code: Optional[str] = None


def _cart(items: List[CartItem]):
    cart = [i.model_dump() for i in items]
    subtotal = round(sum(i["price"] * i["quantity"] for i in cart), 2)
    return cart, subtotal


# -------------------------------------------------
# PUBLIC
# -------------------------------------------------

@router.get("")
async def active_promotions(
    applicable_to: Optional[ApplicableTo] = None,
    applicable_id: Optional[str] = None,
    db=Depends(get_db),
):
    promotions = await get_active_promotions(
        db,
        applicable_to.value if applicable_to else None,
        applicable_id,
    )
    return success_response(promotions)


@router.post("/validate")
async def validate_coupon(
    data: CouponCheck,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    await rate_limit(db, f"coupon_validate:{user['_id']}", 20, 60)

    cart, subtotal = _cart(data.items)
    result = await validate_coupon_code(db, data.code, subtotal, cart, user["_id"])

    if not result["valid"]:
        return success_response({"valid": False, "reason": result["reason"]})

    promotion = result["promotion"]
    return success_response({
        "valid": True,
        "promotion_id": promotion["_id"],
        "name": promotion.get("name"),
        "type": promotion.get("type"),
        "discount": result["discount"],
        "free_shipping": result["free_shipping"],
        "subtotal": subtotal,
        "final_amount": round(subtotal - result["discount"], 2),
    })


@router.post("/best")
async def best_promotion(
    data: BestPromotionCheck,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cart, subtotal = _cart(data.items)
    best = await find_best_promotion(db, subtotal, cart, data.coupon_code, user["_id"])
    return success_response(best)


# -------------------------------------------------
# ADMIN
# -------------------------------------------------

@admin_router.post("")
async def admin_create_promotion(
    data: PromotionCreate,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    payload = data.model_dump(mode="python")
    payload["type"] = data.type.value
    payload["applicable_to"] = data.applicable_to.value

    promotion = await create_promotion(db, payload, admin["_id"])

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="PROMOTION_CREATED",
        metadata={"promotion_id": str(promotion["_id"]), "coupon_code": promotion.get("coupon_code")},
    )

    return success_response(promotion, "Promotion created / Promosiya yaradıldı")


@admin_router.get("")
async def admin_list_promotions(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    is_active: Optional[bool] = None,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    page, limit, skip = clamp_pagination(page, limit, MAX_PAGE_SIZE)
    items, total = await list_promotions(db, skip=skip, limit=limit, is_active=is_active)
    return success_response(paginated(items, page=page, limit=limit, total=total))


@admin_router.get("/{promotion_id}")
async def admin_get_promotion(
    promotion_id: str,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    promotion = await db.promotions.find_one({"_id": parse_object_id(promotion_id, "promotion_id")})
    if not promotion:
        raise NotFoundError("Promotion not found / Promosiya tapılmadı")

    usage_count = await db.coupon_usage.count_documents({"promotion_id": promotion["_id"]})
    return success_response({**promotion, "recorded_usage": usage_count})


@admin_router.patch("/{promotion_id}")
async def admin_update_promotion(
    promotion_id: str,
    data: PromotionUpdate,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    if "applicable_to" in changes and changes["applicable_to"] is not None:
        changes["applicable_to"] = data.applicable_to.value

    promotion = await update_promotion(db, promotion_id, changes)

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="PROMOTION_UPDATED",
        metadata={"promotion_id": promotion_id, "fields": sorted(changes.keys())},
    )

    return success_response(promotion, "Promotion updated / Promosiya yeniləndi")


@admin_router.delete("/{promotion_id}")
async def admin_deactivate_promotion(
    promotion_id: str,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    promotion = await update_promotion(db, promotion_id, {"is_active": False})

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="PROMOTION_DEACTIVATED",
        metadata={"promotion_id": promotion_id},
    )

    return success_response(promotion, "Promotion deactivated / Promosiya deaktiv edildi")
