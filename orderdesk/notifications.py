"""
Publish order/partner events to Redis pub/sub channels: "managers" and "partner_<id>".
Best effort: a publish failure is logged and counted, never raised to the caller, because the
state change it reports has already committed.
"""
import json
import logging

from pydantic_core import to_jsonable_python

from orderdesk.metrics import notifications_failed_total
from orderdesk.order_state import utcnow
from orderdesk.redis_client import get_redis

logger = logging.getLogger(__name__)

MANAGERS_CHANNEL = "managers"


def partner_channel(partner_id: str) -> str:
    return f"partner_{partner_id}"


def _make_body(event: str, data: dict) -> dict:
    return {
        "event": event,
        "data": to_jsonable_python(data),
        "published_at": utcnow().isoformat(),
    }


class Publisher:
    async def send(self, channel: str, body: dict) -> None:
        raise NotImplementedError

    async def publish(self, channel: str, event: str, data: dict) -> None:
        try:
            await self.send(channel, _make_body(event, data))
        except Exception:
            topic = MANAGERS_CHANNEL if channel == MANAGERS_CHANNEL else "partner"
            notifications_failed_total.labels(channel=topic).inc()
            logger.exception("Failed to publish %s to %s", event, channel)

    async def to_managers(self, event: str, data: dict) -> None:
        await self.publish(MANAGERS_CHANNEL, event, data)

    async def to_partner(self, partner_id: str, event: str, data: dict) -> None:
        await self.publish(partner_channel(partner_id), event, data)


class RedisPublisher(Publisher):
    async def send(self, channel: str, body: dict) -> None:
        r = await get_redis()
        await r.publish(channel, json.dumps(body))


_publisher: Publisher | None = None


def get_publisher() -> Publisher:
    global _publisher
    if _publisher is None:
        _publisher = RedisPublisher()
    return _publisher
