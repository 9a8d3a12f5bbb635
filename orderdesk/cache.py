"""
Read-through cache of public user profiles in Redis (user:<id>, short TTL).
The Entity Store stays canonical: every user write calls invalidate_user after commit, and any
cache error falls back to the store.
"""
import json
import logging

from orderdesk.config import settings
from orderdesk.models import User
from orderdesk.redis_client import get_redis
from orderdesk.store import EntityStore

logger = logging.getLogger(__name__)

USER_KEY_PREFIX = "user:"


async def get_user(store: EntityStore, user_id: str) -> User | None:
    try:
        r = await get_redis()
        raw = await r.get(USER_KEY_PREFIX + user_id)
        if raw is not None:
            return User.model_validate(json.loads(raw))
    except Exception:
        logger.warning("User cache read failed for %s, using store", user_id, exc_info=True)

    user = await store.get_user(user_id)
    if user is not None:
        await _put(user)
    return user


async def _put(user: User) -> None:
    try:
        r = await get_redis()
        await r.set(
            USER_KEY_PREFIX + user.id,
            json.dumps(user.model_dump(mode="json")),
            ex=settings.user_cache_ttl_seconds,
        )
    except Exception:
        logger.warning("User cache write failed for %s", user.id, exc_info=True)


async def invalidate_user(user_id: str) -> None:
    try:
        r = await get_redis()
        await r.delete(USER_KEY_PREFIX + user_id)
    except Exception:
        logger.exception("User cache invalidation failed for %s (entry expires in %ds)",
                         user_id, settings.user_cache_ttl_seconds)
