"""
Accounts: registration, login/logout sessions, current user and password change.
Password verification is the only way to obtain a session.
"""
import asyncio
import logging
import secrets
import uuid

import bcrypt

from orderdesk import cache
from orderdesk.access import Caller, authorize
from orderdesk.errors import InvalidInput, NotFound, Unauthenticated
from orderdesk.models import Role, User
from orderdesk.redis_client import delete_session, save_session
from orderdesk.store import DuplicateKeyError, EntityStore

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


async def create_user(store: EntityStore, name: str, email: str, password: str, role: Role) -> User:
    password_hash = await asyncio.to_thread(hash_password, password)
    user = User(
        id=str(uuid.uuid4()),
        name=name,
        email=email.lower(),
        role=role,
        password_hash=password_hash,
        is_available=True,
        current_order_id=None,
    )
    try:
        async with store.unit_of_work() as uow:
            if await uow.get_user_by_email(user.email) is not None:
                raise DuplicateKeyError(user.email)
            user = await uow.insert_user(user)
    except DuplicateKeyError:
        raise InvalidInput("User already exists")
    logger.info("Registered %s user %s", role.value, user.id)
    return user


async def _open_session(user: User) -> str:
    token = secrets.token_urlsafe(32)
    await save_session(token, user.id, user.role.value)
    return token


async def register(store: EntityStore, name: str, email: str, password: str, role: Role) -> tuple[str, User]:
    user = await create_user(store, name, email, password, role)
    return await _open_session(user), user


async def login(store: EntityStore, email: str, password: str) -> tuple[str, User]:
    user = await store.get_user_by_email(email)
    if user is None or not await asyncio.to_thread(verify_password, password, user.password_hash):
        logger.info("Failed login for %s", email)
        raise Unauthenticated("Invalid credentials")
    return await _open_session(user), user


async def logout(caller: Caller) -> None:
    if caller.token:
        await delete_session(caller.token)


async def current_user(store: EntityStore, caller: Caller) -> User:
    authorize(caller)
    user = await cache.get_user(store, caller.id)
    if user is None:
        raise NotFound("User not found")
    return user


async def change_password(store: EntityStore, caller: Caller, current_password: str, new_password: str) -> None:
    authorize(caller)
    user = await store.get_user(caller.id)
    if user is None:
        raise NotFound("User not found")
    if not await asyncio.to_thread(verify_password, current_password, user.password_hash):
        raise InvalidInput("Current password is incorrect")
    password_hash = await asyncio.to_thread(hash_password, new_password)
    async with store.unit_of_work() as uow:
        await uow.update_user(user.id, {"password_hash": password_hash})
    await cache.invalidate_user(user.id)
    logger.info("Password changed for user %s", user.id)
