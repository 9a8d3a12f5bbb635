"""
Order operations: creation, reads, prep-time edits and status transitions.
Each mutating operation is one unit of work (lock, validate, write, commit), and events are
published only after the commit.
"""
import logging

from orderdesk import cache
from orderdesk.access import Caller, authorize
from orderdesk.config import settings
from orderdesk.errors import Forbidden, Internal, InvalidInput, InvalidState, InvalidTransition, NotFound
from orderdesk.metrics import order_status_transitions_total, order_transitions_rejected_total, orders_created_total
from orderdesk.models import DispatchWindowSource, Order, OrderStatus, Role, User
from orderdesk.notifications import Publisher
from orderdesk.order_state import (
    PREP_TIME_EDITABLE,
    RELEASING_STATUSES,
    ROLE_SETTABLE_STATUSES,
    allowed_next,
    calculate_dispatch_window,
    is_terminal,
    is_valid_transition,
    role_may_set,
    utcnow,
)
from orderdesk.schemas import OrderCreate
from orderdesk.store import EntityStore, StaleWriteError

logger = logging.getLogger(__name__)

TOTAL_TOLERANCE = 0.01


def items_total(items) -> float:
    return round(sum(item.quantity * item.price for item in items), 2)


async def create_order(store: EntityStore, publisher: Publisher, body: OrderCreate, caller: Caller) -> Order:
    authorize(caller, (Role.MANAGER,))
    expected_total = items_total(body.items)
    if abs(expected_total - body.total_amount) > TOTAL_TOLERANCE:
        raise InvalidInput(
            f"totalAmount {body.total_amount:.2f} does not match the items total {expected_total:.2f}"
        )

    eta = body.eta or settings.default_eta_minutes
    now = utcnow()
    dispatch_time, estimated_delivery_time = calculate_dispatch_window(body.prep_time, eta, now)
    async with store.unit_of_work() as uow:
        order_id = await uow.next_order_id(now.date())
        order = await uow.insert_order(Order(
            order_id=order_id,
            items=body.items,
            total_amount=body.total_amount,
            customer_name=body.customer_name,
            customer_address=body.customer_address,
            customer_phone=body.customer_phone,
            prep_time=body.prep_time,
            eta=eta,
            status=OrderStatus.PREPARING,
            dispatch_time=dispatch_time,
            estimated_delivery_time=estimated_delivery_time,
            dispatch_window_source=DispatchWindowSource.CREATED,
        ))

    orders_created_total.inc()
    logger.info("Created order_id=%s prep_time=%d eta=%d", order.order_id, order.prep_time, order.eta)
    await publisher.to_managers("order_created", {
        "orderId": order.order_id,
        "status": order.status.value,
        "dispatchTime": order.dispatch_time,
        "estimatedDeliveryTime": order.estimated_delivery_time,
    })
    return order


async def list_orders(store: EntityStore, caller: Caller) -> list[Order]:
    authorize(caller, (Role.MANAGER,))
    return await store.list_orders()


async def assigned_orders(store: EntityStore, caller: Caller) -> list[Order]:
    authorize(caller, (Role.DELIVERY_PARTNER,))
    return await store.list_orders(delivery_partner_id=caller.id)


async def get_order(store: EntityStore, order_id: str, caller: Caller) -> Order:
    """Any authenticated caller; a delivery partner only sees the order bound to them."""
    authorize(caller)
    order = await store.get_order(order_id)
    if order is None:
        raise NotFound("Order not found")
    if caller.is_partner and order.delivery_partner_id != caller.id:
        raise Forbidden("Not authorized to view this order")
    return order


def pending_delivery_time(order: Order):
    """Persisted estimated delivery time, or None once the order is terminal."""
    if is_terminal(order.status):
        return None
    return order.estimated_delivery_time


async def update_prep_time(
    store: EntityStore,
    publisher: Publisher,
    order_id: str,
    minutes: int,
    caller: Caller,
) -> Order:
    authorize(caller, (Role.MANAGER,))
    if minutes < 1:
        raise InvalidInput("prepTime must be at least 1 minute")

    async with store.unit_of_work() as uow:
        order = await uow.get_order(order_id, for_update=True)
        if order is None:
            raise NotFound("Order not found")
        if order.status not in PREP_TIME_EDITABLE:
            raise InvalidState(
                f"Cannot update prep time for orders in {order.status.value} status. "
                f"Order must be in {' or '.join(s.value for s in PREP_TIME_EDITABLE)} status.",
                allowed=allowed_next(order.status),
            )
        dispatch_time, estimated_delivery_time = calculate_dispatch_window(minutes, order.eta)
        try:
            order = await uow.update_order(
                order_id,
                {
                    "prep_time": minutes,
                    "dispatch_time": dispatch_time,
                    "estimated_delivery_time": estimated_delivery_time,
                    "dispatch_window_source": DispatchWindowSource.PREP_TIME_UPDATED,
                },
                expected_status=order.status,
            )
        except StaleWriteError as e:
            raise InvalidState(f"Order {order_id} changed concurrently (now {e.actual})")

    logger.info("Prep time for order_id=%s set to %d min", order_id, minutes)
    await publisher.to_managers("order_prep_time_updated", {
        "orderId": order.order_id,
        "prepTime": order.prep_time,
        "dispatchTime": order.dispatch_time,
        "estimatedDeliveryTime": order.estimated_delivery_time,
    })
    return order


async def set_status(
    store: EntityStore,
    publisher: Publisher,
    order_id: str,
    target: OrderStatus | str,
    caller: Caller,
) -> Order:
    """
    Move an order to `target`. Checks, first failure wins: known status, caller's role may set
    it, order exists, partner caller is the bound partner, transition is in the table.
    DELIVERED stamps delivered_time; DELIVERED and CANCELLED release the bound partner in the
    same unit of work.
    """
    authorize(caller, (Role.MANAGER, Role.DELIVERY_PARTNER))
    try:
        target = OrderStatus(target)
    except ValueError:
        raise InvalidInput(f"Unknown status {target!r}")
    if not role_may_set(caller.role, target):
        settable = ", ".join(s.value for s in ROLE_SETTABLE_STATUSES[caller.role])
        label = "Managers" if caller.is_manager else "Delivery partners"
        raise Forbidden(f"{label} can only set status to: {settable}")

    released: User | None = None
    async with store.unit_of_work() as uow:
        order = await uow.get_order(order_id, for_update=True)
        if order is None:
            raise NotFound("Order not found")
        if caller.is_partner and order.delivery_partner_id != caller.id:
            raise Forbidden("Not authorized to update this order")
        previous = order.status
        if not is_valid_transition(previous, target):
            order_transitions_rejected_total.labels(
                current_status=previous.value, attempted_status=target.value,
            ).inc()
            allowed = allowed_next(previous)
            raise InvalidTransition(
                f"Invalid status transition. Current status is {previous.value}. "
                f"Valid next statuses are: {', '.join(allowed) or 'none'}",
                allowed=allowed,
            )

        changes = {"status": target}
        if target == OrderStatus.DELIVERED:
            changes["delivered_time"] = utcnow()
        partner = None
        if target in RELEASING_STATUSES and order.delivery_partner_id:
            partner = await uow.get_user(order.delivery_partner_id, for_update=True)

        try:
            order = await uow.update_order(order_id, changes, expected_status=previous)
            if partner is not None:
                if partner.current_order_id == order_id:
                    released = await uow.update_user(partner.id, {"is_available": True, "current_order_id": None})
                else:
                    logger.warning(
                        "Partner %s bound to order_id=%s holds current_order_id=%s, not releasing",
                        partner.id, order_id, partner.current_order_id,
                    )
        except StaleWriteError as e:
            raise InvalidTransition(
                f"Order {order_id} changed concurrently (now {e.actual})",
                allowed=allowed_next(OrderStatus(e.actual)) if e.actual else [],
            )
        except Exception as e:
            logger.exception("Status update order_id=%s %s->%s failed, rolling back", order_id, previous.value, target.value)
            raise Internal("Status update failed; no changes were applied") from e

    order_status_transitions_total.labels(from_status=previous.value, to_status=target.value).inc()
    logger.info("order_id=%s %s -> %s by %s %s", order_id, previous.value, target.value, caller.role.value, caller.id)
    if released is not None:
        await cache.invalidate_user(released.id)
    await _publish_status_change(publisher, order, caller, released)
    return order


async def _publish_status_change(publisher: Publisher, order: Order, caller: Caller, released: User | None) -> None:
    await publisher.to_managers("order_status_updated", {
        "orderId": order.order_id,
        "status": order.status.value,
        "updatedBy": caller.role.value,
        "updatedById": caller.id,
    })
    partner_id = order.delivery_partner_id
    if partner_id:
        await publisher.to_partner(partner_id, "order_status_updated", {
            "orderId": order.order_id,
            "status": order.status.value,
        })
    if released is not None:
        await publisher.to_partner(released.id, "availability_updated", {
            "isAvailable": True,
            "message": "You are now available for new orders",
        })
        await publisher.to_managers("delivery_partner_availability_changed", {
            "partnerId": released.id,
            "name": released.name,
            "isAvailable": True,
        })
    if order.status == OrderStatus.DELIVERED:
        await publisher.to_managers("delivery_completed", {
            "orderId": order.order_id,
            "partnerId": partner_id,
            "deliveredTime": order.delivered_time,
        })
        if partner_id:
            await publisher.to_partner(partner_id, "delivery_completed", {
                "orderId": order.order_id,
                "deliveredTime": order.delivered_time,
            })
