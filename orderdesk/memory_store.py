"""
In-process Entity Store for single-process development and tests.
Per-record asyncio locks stand in for row locks; writes are staged on the unit of work and
applied only when it exits cleanly, so a raising block leaves the store untouched.
"""
import asyncio
from datetime import date

from orderdesk.models import Order, OrderStatus, Role, User
from orderdesk.order_state import utcnow
from orderdesk.store import (
    DuplicateKeyError,
    EntityStore,
    StaleWriteError,
    StoreError,
    UnitOfWork,
    format_order_id,
)


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: "MemoryStore"):
        self._store = store
        self._held: list[str] = []
        self._orders: dict[str, Order] = {}
        self._users: dict[str, User] = {}
        self._sequences: dict[date, int] = {}

    async def __aenter__(self) -> "MemoryUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self._commit()
        finally:
            for key in reversed(self._held):
                self._store._release(key)
            self._held.clear()

    def _commit(self) -> None:
        emails = {u.email.lower(): u.id for u in self._store._users.values()}
        for user in self._users.values():
            owner = emails.get(user.email.lower())
            if owner is not None and owner != user.id:
                raise DuplicateKeyError(user.email)
        self._store._orders.update(self._orders)
        self._store._users.update(self._users)
        self._store._sequences.update(self._sequences)

    async def _lock(self, key: str) -> None:
        if key in self._held:
            return
        await self._store._acquire(key)
        self._held.append(key)

    def _current_order(self, order_id: str) -> Order | None:
        return self._orders.get(order_id) or self._store._orders.get(order_id)

    def _current_user(self, user_id: str) -> User | None:
        return self._users.get(user_id) or self._store._users.get(user_id)

    async def get_order(self, order_id: str, for_update: bool = False) -> Order | None:
        if for_update:
            await self._lock(f"order:{order_id}")
        order = self._current_order(order_id)
        return order.model_copy(deep=True) if order is not None else None

    async def list_orders(self, delivery_partner_id: str | None = None) -> list[Order]:
        merged = {**self._store._orders, **self._orders}
        orders = [
            o for o in merged.values()
            if delivery_partner_id is None or o.delivery_partner_id == delivery_partner_id
        ]
        orders.sort(key=lambda o: (o.created_at, o.order_id), reverse=True)
        return [o.model_copy(deep=True) for o in orders]

    async def next_order_id(self, day: date) -> str:
        await self._lock(f"sequence:{day.isoformat()}")
        number = self._sequences.get(day, self._store._sequences.get(day, 0)) + 1
        self._sequences[day] = number
        return format_order_id(day, number)

    async def insert_order(self, order: Order) -> Order:
        if self._current_order(order.order_id) is not None:
            raise DuplicateKeyError(order.order_id)
        now = utcnow()
        stored = order.model_copy(deep=True, update={"created_at": now, "updated_at": now})
        self._orders[order.order_id] = stored
        return stored.model_copy(deep=True)

    async def update_order(
        self,
        order_id: str,
        changes: dict,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        current = self._current_order(order_id)
        if current is None:
            raise StoreError(f"order {order_id} not found")
        if expected_status is not None and current.status != expected_status:
            raise StaleWriteError(order_id, expected_status.value, current.status.value)
        updated = current.model_copy(deep=True, update={**changes, "updated_at": utcnow()})
        self._orders[order_id] = Order.model_validate(updated.model_dump())
        return self._orders[order_id].model_copy(deep=True)

    async def get_user(self, user_id: str, for_update: bool = False) -> User | None:
        if for_update:
            await self._lock(f"user:{user_id}")
        user = self._current_user(user_id)
        return user.model_copy(deep=True) if user is not None else None

    async def get_user_by_email(self, email: str) -> User | None:
        merged = {**self._store._users, **self._users}
        for user in merged.values():
            if user.email.lower() == email.lower():
                return user.model_copy(deep=True)
        return None

    async def list_users(self, role: Role | None = None, is_available: bool | None = None) -> list[User]:
        merged = {**self._store._users, **self._users}
        users = [
            u for u in merged.values()
            if (role is None or u.role == role) and (is_available is None or u.is_available == is_available)
        ]
        users.sort(key=lambda u: u.name)
        return [u.model_copy(deep=True) for u in users]

    async def insert_user(self, user: User) -> User:
        await self._lock(f"email:{user.email.lower()}")
        if await self.get_user_by_email(user.email) is not None:
            raise DuplicateKeyError(user.email)
        now = utcnow()
        stored = user.model_copy(deep=True, update={"created_at": now, "updated_at": now})
        self._users[user.id] = stored
        return stored.model_copy(deep=True)

    async def update_user(self, user_id: str, changes: dict) -> User:
        current = self._current_user(user_id)
        if current is None:
            raise StoreError(f"user {user_id} not found")
        updated = current.model_copy(deep=True, update={**changes, "updated_at": utcnow()})
        if updated.current_order_id is not None and updated.is_available:
            raise StoreError(f"user {user_id}: current_order_id set while available")
        self._users[user_id] = updated
        return updated.model_copy(deep=True)


class MemoryStore(EntityStore):
    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._users: dict[str, User] = {}
        self._sequences: dict[date, int] = {}
        # A lock lives only while some unit of work holds or waits on it
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def unit_of_work(self) -> MemoryUnitOfWork:
        return MemoryUnitOfWork(self)

    async def _acquire(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(key)
            raise

    def _release(self, key: str) -> None:
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: str) -> None:
        self._lock_users[key] -= 1
        if not self._lock_users[key]:
            del self._lock_users[key]
            del self._locks[key]
