"""
Request bodies. Accept camelCase (as sent by the dashboard) or snake_case keys.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from orderdesk.models import OrderItem, OrderStatus, Role


class Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderCreate(Body):
    items: list[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0, description="Must equal the sum of quantity x price")
    customer_name: str = Field(..., min_length=1)
    customer_address: str = Field(..., min_length=1)
    customer_phone: str = Field(..., pattern=r"^[0-9]{10}$", description="10 digits")
    prep_time: int = Field(..., ge=1, description="Minutes")
    eta: int | None = Field(default=None, ge=5, description="Minutes from dispatch to delivery")


class AssignPartner(Body):
    delivery_partner_id: str = Field(..., min_length=1)
    dispatch_time: datetime | None = None
    estimated_delivery_time: datetime | None = None
    eta: int | None = Field(default=None, ge=1)


class UpdateStatus(Body):
    status: OrderStatus


class UpdatePrepTime(Body):
    prep_time: int = Field(..., ge=1)


class UpdateAvailability(Body):
    is_available: bool


class Register(Body):
    name: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=1024)
    role: Role


class Login(Body):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=1024)


class PasswordChange(Body):
    current_password: str = Field(..., min_length=6, max_length=1024)
    new_password: str = Field(..., min_length=6, max_length=1024)
