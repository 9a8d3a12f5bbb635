import json

import redis.asyncio as redis

from orderdesk.config import settings

_redis: redis.Redis | None = None

SESSION_KEY_PREFIX = "session:"


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


async def save_session(token: str, user_id: str, role: str, ttl_seconds: int | None = None) -> None:
    """
    Store a login session under session:<token> with a TTL. NX so a (vanishingly unlikely)
    token collision never overwrites someone else's session.
    """
    r = await get_redis()
    was_set = await r.set(
        SESSION_KEY_PREFIX + token,
        json.dumps({"id": user_id, "role": role}),
        nx=True,
        ex=ttl_seconds or settings.session_ttl_seconds,
    )
    if not was_set:
        raise ValueError("session token collision")


async def load_session(token: str) -> dict | None:
    """Returns {"id", "role"} for a live session, None if missing or expired."""
    r = await get_redis()
    raw = await r.get(SESSION_KEY_PREFIX + token)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


async def delete_session(token: str) -> None:
    r = await get_redis()
    await r.delete(SESSION_KEY_PREFIX + token)
