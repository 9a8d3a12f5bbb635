"""
Order lifecycle state machine. Valid transitions and role permissions enforce business rules.
"""
from datetime import datetime, timedelta, timezone

from orderdesk.models import OrderStatus, Role

# Current status -> allowed next status
VALID_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.PREPARING: [OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED],
    OrderStatus.READY_FOR_PICKUP: [OrderStatus.ASSIGNED, OrderStatus.CANCELLED],  # ASSIGNED only via assign()
    OrderStatus.ASSIGNED: [OrderStatus.PICKED_UP, OrderStatus.CANCELLED],
    OrderStatus.PICKED_UP: [OrderStatus.ON_ROUTE],
    OrderStatus.ON_ROUTE: [OrderStatus.DELIVERED],
    OrderStatus.DELIVERED: [],  # terminal
    OrderStatus.CANCELLED: [],  # terminal
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Statuses each role may request through set_status
ROLE_SETTABLE_STATUSES: dict[Role, list[OrderStatus]] = {
    Role.MANAGER: [OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED],
    Role.DELIVERY_PARTNER: [OrderStatus.PICKED_UP, OrderStatus.ON_ROUTE, OrderStatus.DELIVERED],
}

PREP_TIME_EDITABLE = [OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP]

# Reaching one of these frees the bound partner
RELEASING_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def is_valid_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """True if new is allowed after current."""
    return new in VALID_TRANSITIONS.get(current, [])


def allowed_next(current: OrderStatus) -> list[str]:
    return [s.value for s in VALID_TRANSITIONS.get(current, [])]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def role_may_set(role: Role, status: OrderStatus) -> bool:
    return status in ROLE_SETTABLE_STATUSES.get(role, [])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_dispatch_window(prep_time: int, eta: int, now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Returns (dispatch_time, estimated_delivery_time): dispatch = now + prep_time minutes,
    estimated delivery = dispatch + eta minutes. Re-anchors to `now` on every call; callers
    persist the result at the transition that produced it.
    """
    now = now or utcnow()
    dispatch_time = now + timedelta(minutes=prep_time)
    return dispatch_time, dispatch_time + timedelta(minutes=eta)
