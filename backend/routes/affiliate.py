from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import Optional

from database import get_db
from config.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ROLE_SELLER
from models.affiliate import AffiliateLinkCreate, AffiliateProgramUpsert, CommissionStatus, ReferralCreate
from models.common import to_naive_utc
from utils.affiliate import (
    approve_commission,
    create_affiliate_link,
    generate_affiliate_report,
    get_affiliate_commissions,
    get_affiliate_links,
    get_affiliate_program,
    get_affiliate_stats,
    get_scheduled_payouts,
    mark_payout_paid,
    schedule_payouts_for_program,
    track_affiliate_click,
    track_affiliate_referral,
    upsert_affiliate_program,
)
from utils.audit import log_audit
from utils.errors import NotFoundError
from utils.guards import clamp_pagination
from utils.rate_limit import rate_limit
from utils.responses import paginated, success_response
from utils.security import get_current_user, require_admin, require_role

router = APIRouter(
    prefix="/api/affiliate",
    tags=["Affiliate"]
)

admin_router = APIRouter(
    prefix="/api/admin/affiliate",
    tags=["Admin Affiliate"]
)

# -------------------------------------------------
# SELLER PROGRAM
# -------------------------------------------------

@router.get("/program")
async def seller_program(
    seller=Depends(require_role(ROLE_SELLER)),
    db=Depends(get_db),
):
    return success_response(await get_affiliate_program(db, seller["_id"]))


@router.put("/program")
async def seller_upsert_program(
    data: AffiliateProgramUpsert,
    seller=Depends(require_role(ROLE_SELLER)),
    db=Depends(get_db),
):
    payload = data.model_dump()
    if data.payment_schedule:
        payload["payment_schedule"] = data.payment_schedule.value

    program = await upsert_affiliate_program(db, seller["_id"], payload)
    return success_response(program, "Affiliate program saved / Affiliate proqram yadda saxlanıldı")


# -------------------------------------------------
# AFFILIATE (ANY SIGNED-IN USER)
# -------------------------------------------------

@router.post("/links")
async def create_link(
    data: AffiliateLinkCreate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    link = await create_affiliate_link(db, user["_id"], data.product_id)
    return success_response(link, "Affiliate link created / Affiliate link yaradıldı")


@router.get("/links")
async def my_links(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    product_id: Optional[str] = None,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    page, limit, skip = clamp_pagination(page, limit, MAX_PAGE_SIZE)
    items, total = await get_affiliate_links(db, user["_id"], skip=skip, limit=limit, product_id=product_id)
    return success_response(paginated(items, page=page, limit=limit, total=total))


@router.get("/track/{link_code}")
async def track_click(
    link_code: str,
    db=Depends(get_db),
):
    await rate_limit(db, f"affiliate_click:{link_code.upper()}", 120, 60)

    link = await track_affiliate_click(db, link_code)
    if not link:
        raise NotFoundError("Affiliate link not found / Affiliate link tapılmadı")

    return success_response({
        "link_id": link["_id"],
        "link_code": link["link_code"],
        "product_id": link.get("product_id"),
        "affiliate_id": link["affiliate_id"],
    })


@router.get("/commissions")
async def my_commissions(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    status: Optional[CommissionStatus] = None,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    page, limit, skip = clamp_pagination(page, limit, MAX_PAGE_SIZE)
    items, total, summary = await get_affiliate_commissions(
        db,
        user["_id"],
        skip=skip,
        limit=limit,
        status=status.value if status else None,
    )
    return success_response(paginated(items, page=page, limit=limit, total=total, summary=summary))


@router.get("/stats")
async def my_stats(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    return success_response(await get_affiliate_stats(db, user["_id"]))


@router.get("/report")
async def my_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    report = await generate_affiliate_report(
        db, user["_id"], to_naive_utc(start_date), to_naive_utc(end_date)
    )
    return success_response(report)


@router.post("/referral")
async def record_referral(
    data: ReferralCreate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    result = await track_affiliate_referral(db, user["_id"], data.referrer_id)
    return success_response(result, "Referral recorded / Tövsiyə qeydə alındı")


# -------------------------------------------------
# ADMIN
# -------------------------------------------------

@admin_router.post("/commissions/{commission_id}/approve")
async def admin_approve_commission(
    commission_id: str,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    commission = await approve_commission(db, commission_id)

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="AFFILIATE_COMMISSION_APPROVED",
        metadata={"commission_id": commission_id},
    )

    return success_response(commission, "Commission approved / Komissiya təsdiqləndi")


@admin_router.post("/programs/{program_id}/schedule-payouts")
async def admin_schedule_payouts(
    program_id: str,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    result = await schedule_payouts_for_program(db, program_id)
    return success_response(result)


@admin_router.get("/payouts")
async def admin_scheduled_payouts(
    program_id: Optional[str] = None,
    scheduled_date: Optional[datetime] = None,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    payouts = await get_scheduled_payouts(db, program_id, to_naive_utc(scheduled_date))
    return success_response(payouts)


@admin_router.post("/payouts/{payout_id}/paid")
async def admin_mark_payout_paid(
    payout_id: str,
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    payout = await mark_payout_paid(db, payout_id)

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="AFFILIATE_PAYOUT_PAID",
        metadata={"payout_id": payout_id, "amount": payout["amount"]},
    )

    return success_response(payout, "Payout marked as paid / Ödəniş ödənilmiş kimi qeyd edildi")
