"""
Async Postgres: users + orders (canonical state) and order_sequences (per-day order numbers).
Each unit of work is a single transaction: rows are locked with SELECT ... FOR UPDATE, status
changes are conditional UPDATEs keyed on the previously read status.
"""
import json
from datetime import date
from enum import Enum

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from orderdesk.config import settings
from orderdesk.models import Order, OrderStatus, Role, User
from orderdesk.store import (
    DuplicateKeyError,
    EntityStore,
    StaleWriteError,
    StoreError,
    UnitOfWork,
    format_order_id,
)

_pool: asyncpg.Pool | None = None

ORDER_COLUMNS = (
    "order_id", "items", "total_amount", "customer_name", "customer_address", "customer_phone",
    "prep_time", "eta", "status", "delivery_partner_id", "dispatch_time", "estimated_delivery_time",
    "dispatch_window_source", "delivered_time", "created_at", "updated_at",
)
USER_COLUMNS = (
    "id", "name", "email", "role", "password_hash", "is_available", "current_order_id",
    "created_at", "updated_at",
)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=10,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR(64) PRIMARY KEY,
                name VARCHAR(100) NOT NULL,
                email VARCHAR(255) NOT NULL UNIQUE,
                role VARCHAR(20) NOT NULL CHECK (role IN ('manager', 'delivery_partner')),
                password_hash VARCHAR(255) NOT NULL,
                is_available BOOLEAN NOT NULL DEFAULT TRUE,
                current_order_id VARCHAR(32),
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                CHECK (current_order_id IS NULL OR is_available = FALSE)
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                order_id VARCHAR(32) PRIMARY KEY,
                items JSONB NOT NULL,
                total_amount DOUBLE PRECISION NOT NULL CHECK (total_amount >= 0),
                customer_name VARCHAR(255) NOT NULL,
                customer_address TEXT NOT NULL,
                customer_phone VARCHAR(10) NOT NULL,
                prep_time INT NOT NULL CHECK (prep_time >= 1),
                eta INT NOT NULL DEFAULT 15,
                status VARCHAR(20) NOT NULL DEFAULT 'PREPARING',
                delivery_partner_id VARCHAR(64) REFERENCES users(id),
                dispatch_time TIMESTAMPTZ,
                estimated_delivery_time TIMESTAMPTZ,
                dispatch_window_source VARCHAR(20),
                delivered_time TIMESTAMPTZ,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                CHECK (delivery_partner_id IS NOT NULL
                       OR status NOT IN ('ASSIGNED', 'PICKED_UP', 'ON_ROUTE', 'DELIVERED'))
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_delivery_partner_id
            ON orders(delivery_partner_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_created_at
            ON orders(created_at DESC);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_sequences (
                day DATE PRIMARY KEY,
                last_value INT NOT NULL
            );
        """)


def _to_db(column: str, value):
    if isinstance(value, Enum):
        return value.value
    if column == "items":
        return json.dumps([item if isinstance(item, dict) else item.model_dump() for item in value])
    return value


def _order_from_row(row: asyncpg.Record) -> Order:
    data = dict(row)
    if isinstance(data["items"], str):
        data["items"] = json.loads(data["items"])
    return Order.model_validate(data)


def _user_from_row(row: asyncpg.Record) -> User:
    return User.model_validate(dict(row))


class PostgresUnitOfWork(UnitOfWork):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool
        self._conn: asyncpg.Connection | None = None
        self._tx = None

    async def __aenter__(self) -> "PostgresUnitOfWork":
        self._conn = await self._pool.acquire()
        self._tx = self._conn.transaction()
        await self._tx.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self._tx.commit()
            else:
                await self._tx.rollback()
        finally:
            await self._pool.release(self._conn)
            self._conn = None

    async def get_order(self, order_id: str, for_update: bool = False) -> Order | None:
        lock = " FOR UPDATE" if for_update else ""
        row = await self._conn.fetchrow(f"SELECT * FROM orders WHERE order_id = $1{lock};", order_id)
        return _order_from_row(row) if row is not None else None

    async def list_orders(self, delivery_partner_id: str | None = None) -> list[Order]:
        if delivery_partner_id is None:
            rows = await self._conn.fetch("SELECT * FROM orders ORDER BY created_at DESC, order_id DESC;")
        else:
            rows = await self._conn.fetch(
                "SELECT * FROM orders WHERE delivery_partner_id = $1 ORDER BY created_at DESC, order_id DESC;",
                delivery_partner_id,
            )
        return [_order_from_row(r) for r in rows]

    async def next_order_id(self, day: date) -> str:
        number = await self._conn.fetchval(
            """
            INSERT INTO order_sequences (day, last_value) VALUES ($1, 1)
            ON CONFLICT (day) DO UPDATE SET last_value = order_sequences.last_value + 1
            RETURNING last_value;
            """,
            day,
        )
        return format_order_id(day, number)

    async def insert_order(self, order: Order) -> Order:
        columns = [c for c in ORDER_COLUMNS if c not in ("created_at", "updated_at")]
        values = [_to_db(c, getattr(order, c)) for c in columns]
        placeholders = ", ".join(
            f"${i}::jsonb" if c == "items" else f"${i}" for i, c in enumerate(columns, start=1)
        )
        try:
            row = await self._conn.fetchrow(
                f"INSERT INTO orders ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *;",
                *values,
            )
        except UniqueViolationError:
            raise DuplicateKeyError(order.order_id)
        return _order_from_row(row)

    async def update_order(
        self,
        order_id: str,
        changes: dict,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        assignments, values = _set_clause(changes, ORDER_COLUMNS, start=2)
        query = f"UPDATE orders SET {assignments}, updated_at = NOW() WHERE order_id = $1"
        if expected_status is not None:
            values.append(expected_status.value)
            query += f" AND status = ${len(values) + 1}"
        row = await self._conn.fetchrow(query + " RETURNING *;", order_id, *values)
        if row is None:
            current = await self._conn.fetchval("SELECT status FROM orders WHERE order_id = $1;", order_id)
            if current is None:
                raise StoreError(f"order {order_id} not found")
            raise StaleWriteError(order_id, expected_status.value, current)
        return _order_from_row(row)

    async def get_user(self, user_id: str, for_update: bool = False) -> User | None:
        lock = " FOR UPDATE" if for_update else ""
        row = await self._conn.fetchrow(f"SELECT * FROM users WHERE id = $1{lock};", user_id)
        return _user_from_row(row) if row is not None else None

    async def get_user_by_email(self, email: str) -> User | None:
        row = await self._conn.fetchrow("SELECT * FROM users WHERE lower(email) = lower($1);", email)
        return _user_from_row(row) if row is not None else None

    async def list_users(self, role: Role | None = None, is_available: bool | None = None) -> list[User]:
        clauses, values = [], []
        if role is not None:
            values.append(role.value)
            clauses.append(f"role = ${len(values)}")
        if is_available is not None:
            values.append(is_available)
            clauses.append(f"is_available = ${len(values)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._conn.fetch(f"SELECT * FROM users{where} ORDER BY name ASC;", *values)
        return [_user_from_row(r) for r in rows]

    async def insert_user(self, user: User) -> User:
        columns = [c for c in USER_COLUMNS if c not in ("created_at", "updated_at")]
        values = [_to_db(c, getattr(user, c)) for c in columns]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        try:
            row = await self._conn.fetchrow(
                f"INSERT INTO users ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *;",
                *values,
            )
        except UniqueViolationError:
            raise DuplicateKeyError(user.email)
        return _user_from_row(row)

    async def update_user(self, user_id: str, changes: dict) -> User:
        assignments, values = _set_clause(changes, USER_COLUMNS, start=2)
        row = await self._conn.fetchrow(
            f"UPDATE users SET {assignments}, updated_at = NOW() WHERE id = $1 RETURNING *;",
            user_id,
            *values,
        )
        if row is None:
            raise StoreError(f"user {user_id} not found")
        return _user_from_row(row)


def _set_clause(changes: dict, allowed: tuple[str, ...], start: int) -> tuple[str, list]:
    parts, values = [], []
    for i, (column, value) in enumerate(changes.items(), start=start):
        if column not in allowed or column in ("created_at", "updated_at"):
            raise StoreError(f"column {column} is not writable")
        cast = "::jsonb" if column == "items" else ""
        parts.append(f"{column} = ${i}{cast}")
        values.append(_to_db(column, value))
    return ", ".join(parts), values


class PostgresStore(EntityStore):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    def unit_of_work(self) -> PostgresUnitOfWork:
        return PostgresUnitOfWork(self._pool)

    async def close(self) -> None:
        await close_pool()
