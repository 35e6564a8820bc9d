from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import get_db

# ENV
from config.env import ENV, LOG_LEVEL, CORS_ALLOWED_ORIGINS, ENABLE_WORKERS, validate_production_env

# ROUTES
from routes.promotions import router as promotions_router, admin_router as admin_promotions_router
from routes.loyalty import router as loyalty_router, admin_router as admin_loyalty_router
from routes.affiliate import router as affiliate_router, admin_router as admin_affiliate_router
from routes.gift_cards import router as gift_cards_router, admin_router as admin_gift_cards_router
from routes.cart import router as cart_router
from routes.checkout import router as checkout_router
from routes.chat import router as chat_router
from routes.tracking import router as tracking_router
from routes.realtime import router as realtime_router, admin_router as admin_realtime_router

# ERRORS / INDEXES
from utils.error_handlers import register_error_handlers
from utils.indexes import ensure_indexes
from utils.realtime import hub

# WORKERS
from workers.points_expiry_worker import points_expiry_worker
from workers.loyalty_rewards_worker import loyalty_rewards_worker
from workers.affiliate_payout_worker import affiliate_payout_worker
from workers.gift_card_worker import gift_card_worker
from workers.realtime_cleanup_worker import realtime_cleanup_worker

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

logger.info("ENV: %s", ENV)

app = FastAPI(
    title="Yusu Commerce API",
    version="1.0.0",
    docs_url=None if ENV == "production" else "/docs",
    redoc_url=None if ENV == "production" else "/redoc",
    openapi_url=None if ENV == "production" else "/openapi.json",
)

# -----------------------------
# CORS
# -----------------------------

allowed_origins = [origin.strip() for origin in CORS_ALLOWED_ORIGINS if origin.strip()]
if not allowed_origins:
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# ERRORS
# -----------------------------

register_error_handlers(app)

# -----------------------------
# ROUTES
# -----------------------------

for router in (
    promotions_router,
    loyalty_router,
    affiliate_router,
    gift_cards_router,
    cart_router,
    checkout_router,
    chat_router,
    tracking_router,
    realtime_router,
    admin_promotions_router,
    admin_loyalty_router,
    admin_affiliate_router,
    admin_gift_cards_router,
    admin_realtime_router,
):
    app.include_router(router)

# -----------------------------
# HEALTH CHECKS
# -----------------------------

@app.get("/api/health")
async def health():
    return {"success": True, "data": {"status": "ok"}}


@app.get("/api/health/db")
async def health_db(db=Depends(get_db)):
    await db.command("ping")
    return {"success": True, "data": {"status": "mongodb connected"}}

# -----------------------------
# STARTUP (ONE PLACE ONLY)
# -----------------------------

@app.on_event("startup")
async def startup():
    validate_production_env()
    await ensure_indexes(get_db())

    if not ENABLE_WORKERS:
        logger.info("Background workers disabled")
        return

    asyncio.create_task(points_expiry_worker())
    asyncio.create_task(loyalty_rewards_worker())
    asyncio.create_task(affiliate_payout_worker())
    asyncio.create_task(gift_card_worker())
    asyncio.create_task(realtime_cleanup_worker())


@app.on_event("shutdown")
async def shutdown():
    closed = hub.close_all()
    logger.info("SSE connections closed on shutdown: %s", closed)
