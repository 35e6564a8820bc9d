import time
import logging
from typing import Any, Awaitable, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

# In-memory store (process-level): key -> (expires_at, value)
_CACHE_STORE: Dict[str, Tuple[float, Any]] = {}


def get(key: str):
    entry = _CACHE_STORE.get(key)
    if entry is None:
        return None

    expires_at, value = entry
    if time.monotonic() > expires_at:
        _CACHE_STORE.pop(key, None)
        return None

    return value


def set(key: str, value, ttl: int = DEFAULT_TTL_SECONDS):
    _CACHE_STORE[key] = (time.monotonic() + ttl, value)


def delete(key: str):
    _CACHE_STORE.pop(key, None)


def invalidate_prefix(prefix: str) -> int:
    keys = [k for k in _CACHE_STORE if k.startswith(prefix)]
    for k in keys:
        _CACHE_STORE.pop(k, None)
    return len(keys)


def clear():
    _CACHE_STORE.clear()


def clean_expired() -> int:
    now = time.monotonic()
    expired = [k for k, (expires_at, _) in _CACHE_STORE.items() if now > expires_at]
    for k in expired:
        _CACHE_STORE.pop(k, None)
    return len(expired)


async def get_or_load(
    key: str,
    loader: Callable[[], Awaitable[Any]],
    ttl: int = DEFAULT_TTL_SECONDS,
):
    """
    Read-through helper: return the cached value or await `loader()`
    and cache its result. `None` results are not cached.
    """
    value = get(key)
    if value is not None:
        return value

    value = await loader()
    if value is not None:
        set(key, value, ttl)
    else:
        logger.debug("CACHE_MISS_EMPTY key=%s", key)
    return value
