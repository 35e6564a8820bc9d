from motor.motor_asyncio import AsyncIOMotorClient

from config.env import MONGO_URI, MONGO_DB_NAME

_client = None


def get_client():
    global _client

    if _client is None:
        if not MONGO_URI:
            raise RuntimeError("MONGODB_URI not set")
        _client = AsyncIOMotorClient(MONGO_URI)

    return _client


def get_db():
    client = get_client()
    return client.get_default_database(default=MONGO_DB_NAME)
