"""
Entity records for users and orders. Field names are snake_case (matching the Postgres columns);
JSON output uses camelCase aliases.
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python


class Role(str, Enum):
    MANAGER = "manager"
    DELIVERY_PARTNER = "delivery_partner"


class OrderStatus(str, Enum):
    PREPARING = "PREPARING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    ON_ROUTE = "ON_ROUTE"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class DispatchWindowSource(str, Enum):
    """Which operation produced the persisted dispatch/estimated-delivery times."""

    CREATED = "created"
    PREP_TIME_UPDATED = "prep_time_updated"
    ASSIGNED = "assigned"


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def public(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class OrderItem(Record):
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class User(Record):
    id: str
    name: str
    email: str
    role: Role
    password_hash: str = Field(default="", exclude=True)
    is_available: bool = True
    current_order_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Order(Record):
    order_id: str
    items: list[OrderItem]
    total_amount: float
    customer_name: str
    customer_address: str
    customer_phone: str
    prep_time: int
    eta: int
    status: OrderStatus = OrderStatus.PREPARING
    delivery_partner_id: str | None = None
    dispatch_time: datetime | None = None
    estimated_delivery_time: datetime | None = None
    dispatch_window_source: DispatchWindowSource | None = None
    delivered_time: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def summary(self) -> dict:
        return {
            "orderId": self.order_id,
            "status": self.status.value,
            "deliveryPartnerId": self.delivery_partner_id,
            "dispatchTime": iso(self.dispatch_time),
            "estimatedDeliveryTime": iso(self.estimated_delivery_time),
        }


def iso(value: datetime | None) -> str | None:
    """Same wire format as Record.public() (UTC rendered with a Z suffix)."""
    return to_jsonable_python(value) if value is not None else None
