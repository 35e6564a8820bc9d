import os
from datetime import datetime

# Configure the app before anything imports config.env
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017/yusu_test")
os.environ["ENABLE_WORKERS"] = "false"

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from database import get_db
from main import app
from utils import cache
from utils.jwt import create_access_token
from utils.realtime import hub


@pytest.fixture
def db():
    return AsyncMongoMockClient()["yusu_test"]


@pytest.fixture(autouse=True)
def reset_process_state():
    cache.clear()
    hub.close_all()
    yield
    app.dependency_overrides.clear()
    cache.clear()
    hub.close_all()


@pytest_asyncio.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(db):
    async def _make(role: str = "customer", **extra) -> dict:
        doc = {
            "email": f"{role}-{ObjectId()}@example.com",
            "name": role.title(),
            "role": role,
            "created_at": datetime(2024, 1, 1),
            **extra,
        }
        await db.users.insert_one(doc)
        return doc

    return _make


@pytest.fixture
def auth():
    def _headers(user: dict) -> dict:
        token = create_access_token(user["_id"], user["role"])
        return {"Authorization": f"Bearer {token}"}

    return _headers
