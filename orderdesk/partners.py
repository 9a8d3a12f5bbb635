"""
Delivery partner self-service (availability) and manager-side partner listings.
"""
import logging

from orderdesk import cache
from orderdesk.access import Caller, authorize
from orderdesk.errors import HasActiveOrder, NotFound
from orderdesk.models import Role, User
from orderdesk.notifications import Publisher
from orderdesk.store import EntityStore

logger = logging.getLogger(__name__)


async def set_availability(store: EntityStore, publisher: Publisher, desired: bool, caller: Caller) -> User:
    authorize(caller, (Role.DELIVERY_PARTNER,))
    async with store.unit_of_work() as uow:
        user = await uow.get_user(caller.id, for_update=True)
        if user is None:
            raise NotFound("User not found")
        # current_order_id set => is_available stays False until the order completes
        if user.current_order_id is not None:
            raise HasActiveOrder("Cannot change availability while having an active order")
        user = await uow.update_user(user.id, {"is_available": desired})

    logger.info("Partner %s availability set to %s", user.id, desired)
    await cache.invalidate_user(user.id)
    await publisher.to_managers("delivery_partner_availability_changed", {
        "partnerId": user.id,
        "name": user.name,
        "isAvailable": user.is_available,
    })
    await publisher.to_partner(user.id, "availability_updated", {"isAvailable": user.is_available})
    return user


async def list_partners(store: EntityStore, caller: Caller, available_only: bool = True) -> list[User]:
    authorize(caller, (Role.MANAGER,))
    return await store.list_users(
        role=Role.DELIVERY_PARTNER,
        is_available=True if available_only else None,
    )
