import redis.asyncio as redis
from app.config import settings

_redis: redis.Redis | None = None

DELIVERED_KEY_PREFIX = "broker:delivered:"


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def was_delivered(notification_id: str) -> bool:
    """True if the broker already acknowledged this notification (redelivered message)."""
    r = await get_redis()
    return bool(await r.exists(f"{DELIVERED_KEY_PREFIX}{notification_id}"))


async def mark_delivered(notification_id: str, ttl_seconds: int | None = None) -> bool:
    """
    Record a successful delivery. Uses SET NX: returns False if another worker recorded it first.
    """
    r = await get_redis()
    was_set = await r.set(
        f"{DELIVERED_KEY_PREFIX}{notification_id}",
        "1",
        nx=True,
        ex=ttl_seconds or settings.delivery_dedupe_ttl_seconds,
    )
    return bool(was_set)
