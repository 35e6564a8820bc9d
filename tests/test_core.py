from datetime import datetime

import pytest
from bson import ObjectId
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from utils import cache
from utils.error_handlers import register_error_handlers
from utils.errors import NotFoundError, RateLimitError, ValidationError
from utils.guards import clamp_pagination, parse_object_id
from utils.jwt import create_access_token
from utils.rate_limit import rate_limit
from utils.responses import paginated
from utils.serializers import serialize_doc


# -------------------------------------------------
# helpers
# -------------------------------------------------

def test_serialize_doc_renames_id_and_stringifies():
    oid = ObjectId()
    doc = {"_id": oid, "nested": [{"at": datetime(2026, 1, 2, 3, 4)}], "n": 1}

    assert serialize_doc(doc) == {"id": str(oid), "nested": [{"at": "2026-01-02T03:04:00"}], "n": 1}


def test_parse_object_id_rejects_garbage():
    with pytest.raises(ValidationError, match="Invalid order_id"):
        parse_object_id("123", "order_id")


def test_clamp_pagination():
    assert clamp_pagination(0, 500, 100) == (1, 100, 0)
    assert clamp_pagination(3, 20, 100) == (3, 20, 40)


def test_paginated_shape():
    body = paginated([1, 2], page=2, limit=2, total=5, summary={"x": 1})

    assert body["pagination"] == {"page": 2, "limit": 2, "total": 5, "total_pages": 3}
    assert body["summary"] == {"x": 1}


# -------------------------------------------------
# cache
# -------------------------------------------------

def test_cache_expiry_and_prefix_invalidation():
    cache.set("promotions:a", 1)
    cache.set("promotions:b", 2)
    cache.set("loyalty:program", 3)
    cache.set("stale", 4, ttl=-1)

    assert cache.get("stale") is None
    assert cache.invalidate_prefix("promotions:") == 2
    assert cache.get("promotions:a") is None
    assert cache.get("loyalty:program") == 3


async def test_get_or_load_does_not_cache_none():
    calls = []

    async def loader():
        calls.append(1)
        return None if len(calls) == 1 else "value"

    assert await cache.get_or_load("k", loader) is None
    assert await cache.get_or_load("k", loader) == "value"
    assert await cache.get_or_load("k", loader) == "value"
    assert len(calls) == 2


# -------------------------------------------------
# rate limit
# -------------------------------------------------

async def test_rate_limit_blocks_within_window_and_resets(db):
    start = datetime(2026, 6, 1, 12, 0, 0)

    for _ in range(3):
        await rate_limit(db, "coupon_validate:u1", 3, 60, now=start)
    with pytest.raises(RateLimitError):
        await rate_limit(db, "coupon_validate:u1", 3, 60, now=start)

    # other keys are independent
    await rate_limit(db, "coupon_validate:u2", 3, 60, now=start)
    # next window
    await rate_limit(db, "coupon_validate:u1", 3, 60, now=datetime(2026, 6, 1, 12, 1, 0))


# -------------------------------------------------
# error envelope
# -------------------------------------------------

class Payload(BaseModel):
    name: str
    qty: int


@pytest.fixture
def error_app():
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Order not found / Sifariş tapılmadı")

    @app.post("/payload")
    async def payload(data: Payload):
        return {"ok": True}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret detail")

    return app


async def test_app_errors_use_envelope(error_app):
    async with AsyncClient(transport=ASGITransport(app=error_app), base_url="http://test") as ac:
        res = await ac.get("/missing")

    assert res.status_code == 404
    assert res.json() == {"success": False, "error": "Order not found / Sifariş tapılmadı"}


async def test_validation_errors_are_400_with_field_paths(error_app):
    async with AsyncClient(transport=ASGITransport(app=error_app), base_url="http://test") as ac:
        res = await ac.post("/payload", json={"qty": "many"})

    body = res.json()
    assert res.status_code == 400
    assert body["success"] is False
    assert sorted(d["path"] for d in body["details"]) == ["name", "qty"]


async def test_unhandled_errors_hide_details(error_app):
    transport = ASGITransport(app=error_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        res = await ac.get("/boom")

    assert res.status_code == 500
    assert res.json() == {"success": False, "error": "Internal server error / Daxili server xətası"}


async def test_unknown_route_uses_envelope(client):
    res = await client.get("/api/nope")

    assert res.status_code == 404
    assert res.json()["success"] is False


# -------------------------------------------------
# auth
# -------------------------------------------------

async def test_blocked_user_is_forbidden(client, make_user, auth):
    user = await make_user("customer", is_blocked=True)

    res = await client.get("/api/loyalty/points", headers=auth(user))

    assert res.status_code == 403


async def test_expired_token_is_unauthorized(client, make_user):
    user = await make_user("customer")
    token = create_access_token(user["_id"], user["role"], minutes=-1)

    res = await client.get("/api/loyalty/points", headers={"Authorization": f"Bearer {token}"})

    assert res.status_code == 401


async def test_health(client):
    res = await client.get("/api/health")

    assert res.json() == {"success": True, "data": {"status": "ok"}}
