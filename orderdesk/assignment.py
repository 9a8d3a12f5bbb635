"""
Assignment engine: binds one available delivery partner to one order, once.
The order row and then the partner row are locked for the whole read-validate-write sequence;
the order write and the partner write commit together or not at all.
"""
import logging
from datetime import datetime, timedelta, timezone

from orderdesk import cache
from orderdesk.access import Caller, authorize
from orderdesk.config import settings
from orderdesk.errors import (
    AlreadyAssigned,
    AssignmentFailed,
    InvalidInput,
    InvalidRole,
    InvalidTransition,
    NotFound,
    OrderDeskError,
    PartnerBusy,
    PartnerNotFound,
    PartnerUnavailable,
    PrepTimeRequired,
)
from orderdesk.metrics import assignments_failed_total, assignments_total, order_status_transitions_total
from orderdesk.models import DispatchWindowSource, Order, OrderStatus, Role
from orderdesk.notifications import Publisher
from orderdesk.order_state import allowed_next, calculate_dispatch_window, is_valid_transition, utcnow
from orderdesk.store import EntityStore, StaleWriteError

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_dispatch_window(
    prep_time: int,
    eta: int,
    dispatch_time: datetime | None,
    estimated_delivery_time: datetime | None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """
    Caller-supplied times win only when both are given and consistent: dispatch no earlier than
    now (minus timestamp_skew_seconds) and estimated delivery no earlier than dispatch.
    Otherwise the window is computed from prep_time and eta.
    """
    now = now or utcnow()
    if dispatch_time is None or estimated_delivery_time is None:
        return calculate_dispatch_window(prep_time, eta, now)

    dispatch_time = _as_utc(dispatch_time)
    estimated_delivery_time = _as_utc(estimated_delivery_time)
    if dispatch_time < now - timedelta(seconds=settings.timestamp_skew_seconds):
        raise InvalidInput("dispatchTime must not be in the past")
    if estimated_delivery_time < dispatch_time:
        raise InvalidInput("estimatedDeliveryTime must not be before dispatchTime")
    return dispatch_time, estimated_delivery_time


async def assign(
    store: EntityStore,
    publisher: Publisher,
    order_id: str,
    partner_id: str,
    caller: Caller,
    dispatch_time: datetime | None = None,
    estimated_delivery_time: datetime | None = None,
    eta: int | None = None,
) -> Order:
    authorize(caller, (Role.MANAGER,))
    if eta is not None and eta < 1:
        raise InvalidInput("eta must be at least 1 minute")

    try:
        async with store.unit_of_work() as uow:
            order = await uow.get_order(order_id, for_update=True)
            if order is None:
                raise NotFound("Order not found")
            if order.delivery_partner_id:
                raise AlreadyAssigned("Order already has a delivery partner assigned")

            partner = await uow.get_user(partner_id, for_update=True)
            if partner is None:
                raise PartnerNotFound("Delivery partner not found")
            if partner.role != Role.DELIVERY_PARTNER:
                raise InvalidRole("User is not a delivery partner")
            if not partner.is_available:
                raise PartnerUnavailable("Delivery partner is not available")
            if partner.current_order_id is not None:
                raise PartnerBusy("Delivery partner is already assigned to another order")
            if not order.prep_time or order.prep_time <= 0:
                raise PrepTimeRequired("Order needs a prep time before a partner can be assigned")
            if not is_valid_transition(order.status, OrderStatus.ASSIGNED):
                raise InvalidTransition(
                    f"Cannot assign an order in {order.status.value} status",
                    allowed=allowed_next(order.status),
                )

            effective_eta = eta or order.eta
            window = resolve_dispatch_window(order.prep_time, effective_eta, dispatch_time, estimated_delivery_time)
            previous = order.status

            try:
                order = await uow.update_order(
                    order_id,
                    {
                        "delivery_partner_id": partner.id,
                        "status": OrderStatus.ASSIGNED,
                        "eta": effective_eta,
                        "dispatch_time": window[0],
                        "estimated_delivery_time": window[1],
                        "dispatch_window_source": DispatchWindowSource.ASSIGNED,
                    },
                    expected_status=previous,
                )
                partner = await uow.update_user(partner.id, {"is_available": False, "current_order_id": order_id})
            except StaleWriteError as e:
                raise AlreadyAssigned(f"Order {order_id} changed concurrently (now {e.actual})")
            except Exception as e:
                logger.exception("Assignment of order_id=%s to partner %s failed, rolling back", order_id, partner_id)
                raise AssignmentFailed("Assignment failed; no changes were applied") from e
    except OrderDeskError as e:
        assignments_failed_total.labels(reason=e.kind).inc()
        raise

    assignments_total.inc()
    order_status_transitions_total.labels(from_status=previous.value, to_status=OrderStatus.ASSIGNED.value).inc()
    logger.info("Assigned order_id=%s to partner %s (dispatch %s)", order_id, partner.id, order.dispatch_time)
    await cache.invalidate_user(partner.id)

    await publisher.to_partner(partner.id, "order_assigned", {
        "orderId": order.order_id,
        "customerName": order.customer_name,
        "customerAddress": order.customer_address,
        "dispatchTime": order.dispatch_time,
        "estimatedDeliveryTime": order.estimated_delivery_time,
    })
    await publisher.to_partner(partner.id, "availability_updated", {
        "isAvailable": False,
        "message": "You are now unavailable because you have an active order",
    })
    await publisher.to_managers("order_assigned_to_partner", {
        "orderId": order.order_id,
        "partnerId": partner.id,
        "partnerName": partner.name,
    })
    return order
