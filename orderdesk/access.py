"""
Access Control: resolve a presented session token to (identity, role), then check the role
against what an operation requires. Routes resolve the caller with current_caller; each
operation calls authorize with the roles it accepts instead of branching on role itself.
"""
from dataclasses import dataclass

from fastapi import Header

from orderdesk.errors import Forbidden, Unauthenticated
from orderdesk.models import Role
from orderdesk.redis_client import load_session


@dataclass(frozen=True)
class Caller:
    id: str
    role: Role
    token: str | None = None

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER

    @property
    def is_partner(self) -> bool:
        return self.role == Role.DELIVERY_PARTNER


async def authenticate(token: str | None) -> Caller:
    if not token:
        raise Unauthenticated("No token, authorization denied")
    session = await load_session(token)
    if not session or "id" not in session:
        raise Unauthenticated("Token is not valid")
    try:
        role = Role(session.get("role"))
    except ValueError:
        raise Unauthenticated("Token is not valid")
    return Caller(id=session["id"], role=role, token=token)


def authorize(caller: Caller, roles: tuple[Role, ...] | list[Role] = ()) -> Caller:
    """Empty roles = any authenticated caller."""
    if roles and caller.role not in roles:
        raise Forbidden("Forbidden - insufficient role permissions")
    return caller


def _extract_token(x_auth_token: str | None, authorization: str | None) -> str | None:
    if x_auth_token:
        return x_auth_token
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


async def current_caller(
    x_auth_token: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> Caller:
    return await authenticate(_extract_token(x_auth_token, authorization))

