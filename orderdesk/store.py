"""
Entity Store interface. All reads and writes go through a unit of work: rows fetched with
for_update=True stay locked until the unit of work exits; writes commit together on a clean
exit and roll back together if the block raises.

Lock ordering: an operation that locks both an order and a user locks the order first.
"""
from datetime import date

from orderdesk.config import settings
from orderdesk.models import Order, OrderStatus, Role, User


class StoreError(Exception):
    """Persistence-layer failure."""


class DuplicateKeyError(StoreError):
    """Raised when a unique key (user email, order id) already exists."""


class StaleWriteError(StoreError):
    """Raised when a conditional write finds the record no longer in the expected state."""

    def __init__(self, key: str, expected: str, actual: str | None):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"{key}: expected {expected}, found {actual}")


class UnitOfWork:
    async def __aenter__(self) -> "UnitOfWork":
        raise NotImplementedError

    async def __aexit__(self, exc_type, exc, tb) -> None:
        raise NotImplementedError

    async def get_order(self, order_id: str, for_update: bool = False) -> Order | None:
        raise NotImplementedError

    async def list_orders(self, delivery_partner_id: str | None = None) -> list[Order]:
        """Newest first. Filters by bound partner when delivery_partner_id is given."""
        raise NotImplementedError

    async def next_order_id(self, day: date) -> str:
        raise NotImplementedError

    async def insert_order(self, order: Order) -> Order:
        raise NotImplementedError

    async def update_order(
        self,
        order_id: str,
        changes: dict,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        """Apply changes; with expected_status, only if the stored status still equals it."""
        raise NotImplementedError

    async def get_user(self, user_id: str, for_update: bool = False) -> User | None:
        raise NotImplementedError

    async def get_user_by_email(self, email: str) -> User | None:
        raise NotImplementedError

    async def list_users(self, role: Role | None = None, is_available: bool | None = None) -> list[User]:
        raise NotImplementedError

    async def insert_user(self, user: User) -> User:
        raise NotImplementedError

    async def update_user(self, user_id: str, changes: dict) -> User:
        raise NotImplementedError


class EntityStore:
    def unit_of_work(self) -> UnitOfWork:
        raise NotImplementedError

    async def close(self) -> None:
        pass

    # Single-statement reads, each in its own unit of work

    async def get_order(self, order_id: str) -> Order | None:
        async with self.unit_of_work() as uow:
            return await uow.get_order(order_id)

    async def list_orders(self, delivery_partner_id: str | None = None) -> list[Order]:
        async with self.unit_of_work() as uow:
            return await uow.list_orders(delivery_partner_id)

    async def get_user(self, user_id: str) -> User | None:
        async with self.unit_of_work() as uow:
            return await uow.get_user(user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        async with self.unit_of_work() as uow:
            return await uow.get_user_by_email(email)

    async def list_users(self, role: Role | None = None, is_available: bool | None = None) -> list[User]:
        async with self.unit_of_work() as uow:
            return await uow.list_users(role, is_available)


def format_order_id(day: date, number: int) -> str:
    return f"ORD-{day.strftime('%Y%m%d')}-{number:04d}"


_store: EntityStore | None = None


async def get_store() -> EntityStore:
    global _store
    if _store is None:
        if settings.store_backend == "memory":
            from orderdesk.memory_store import MemoryStore
            _store = MemoryStore()
        else:
            from orderdesk.db import PostgresStore, get_pool, init_schema
            pool = await get_pool()
            await init_schema(pool)
            _store = PostgresStore(pool)
    return _store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
