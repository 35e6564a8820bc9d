from datetime import datetime

from utils.errors import RateLimitError


async def rate_limit(
    db,
    key: str,
    max_requests: int,
    window_seconds: int,
    *,
    now: datetime | None = None,
):
    """
    Fixed-window counter stored in `rate_limits`.
    Each window gets its own bucket document: `<key>:<window index>`.
    """
    now = now or datetime.utcnow()
    window_index = int(now.timestamp()) // window_seconds
    bucket = f"{key}:{window_index}"

    record = await db.rate_limits.find_one({"key": bucket})
    if record and record.get("count", 0) >= max(1, max_requests):
        raise RateLimitError()

    await db.rate_limits.update_one(
        {"key": bucket},
        {
            "$inc": {"count": 1},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )
