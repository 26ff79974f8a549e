"""
Async Postgres order store: orders (current order + driver status per order).
Every write runs in its own transaction: lock the order row, compare the stored status with the
status the caller validated against, then update. Two racing transitions on the same order
cannot both succeed.
"""
from typing import Protocol

import asyncpg

from app.config import settings
from app.errors import NotFoundError, StatusConflictError, UnknownStatusError
from app.models import Order
from app.order_state import DRIVER_SEQUENCES, DriverStatus, OrderStatus, OrderType

_pool: asyncpg.Pool | None = None


class OrderStore(Protocol):
    """
    get_order raises NotFoundError. Both updates raise NotFoundError or StatusConflictError.
    update_order_status skips the status check when expected is None; update_driver_status
    always checks, with expected=None meaning no driver status has been set yet.
    """
    async def get_order(self, order_id: str) -> Order: ...

    async def update_order_status(
        self, order_id: str, status: OrderStatus, expected: OrderStatus | None = None
    ) -> Order: ...

    async def update_driver_status(
        self, order_id: str, status: DriverStatus, expected: DriverStatus | None = None
    ) -> Order: ...


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=settings.db_command_timeout_seconds,
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
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(255) PRIMARY KEY,
                order_type VARCHAR(20) NOT NULL DEFAULT 'catering',
                status VARCHAR(30) NOT NULL DEFAULT 'PENDING',
                driver_status VARCHAR(30),
                driver_id VARCHAR(255),
                created_at TIMESTAMPTZ DEFAULT NOW(),
                assigned_at TIMESTAMPTZ,
                pickup_at TIMESTAMPTZ,
                arrival_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_driver_id
            ON orders(driver_id);
        """)


# Driver status -> timestamp column stamped when the status is reached
_DRIVER_TIMESTAMP_COLUMNS: dict[DriverStatus, str] = {
    DriverStatus.ASSIGNED: "assigned_at",
    DriverStatus.STARTED: "pickup_at",
    DriverStatus.PICKED_UP: "pickup_at",
    DriverStatus.ARRIVED_TO_CLIENT: "arrival_at",
    DriverStatus.COMPLETED: "completed_at",
}


def _row_to_order(row: asyncpg.Record) -> Order:
    return Order(**dict(row))


class PostgresOrderStore:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create_order(
        self,
        order_id: str,
        order_type: OrderType = OrderType.CATERING,
        status: OrderStatus = OrderStatus.PENDING,
        driver_id: str | None = None,
        driver_status: DriverStatus | None = None,
    ) -> Order:
        """
        Seed an order. The real creation flow lives outside this service.
        Raises UnknownStatusError if driver_status is not a step of the order type.
        """
        if driver_status is not None and driver_status not in DRIVER_SEQUENCES[order_type]:
            raise UnknownStatusError(driver_status.value, f"{order_type.value} driver status")
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO orders (id, order_type, status, driver_id, driver_status, updated_at)
                VALUES ($1, $2, $3, $4, $5, NOW())
                RETURNING *;
                """,
                order_id,
                order_type.value,
                status.value,
                driver_id,
                driver_status.value if driver_status else None,
            )
        return _row_to_order(row)

    async def get_order(self, order_id: str) -> Order:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        if row is None:
            raise NotFoundError(order_id)
        return _row_to_order(row)

    async def update_order_status(
        self, order_id: str, status: OrderStatus, expected: OrderStatus | None = None
    ) -> Order:
        completed_clause = ", completed_at = NOW()" if status == OrderStatus.COMPLETED else ""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT status FROM orders WHERE id = $1 FOR UPDATE;",
                    order_id,
                )
                if row is None:
                    raise NotFoundError(order_id)
                if expected is not None and row["status"] != expected.value:
                    raise StatusConflictError(order_id, "status", expected, row["status"])
                row = await conn.fetchrow(
                    f"""
                    UPDATE orders SET status = $1, updated_at = NOW(){completed_clause}
                    WHERE id = $2
                    RETURNING *;
                    """,
                    status.value,
                    order_id,
                )
        return _row_to_order(row)

    async def update_driver_status(
        self, order_id: str, status: DriverStatus, expected: DriverStatus | None = None
    ) -> Order:
        column = _DRIVER_TIMESTAMP_COLUMNS.get(status)
        stamp_clause = f", {column} = NOW()" if column else ""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT driver_status FROM orders WHERE id = $1 FOR UPDATE;",
                    order_id,
                )
                if row is None:
                    raise NotFoundError(order_id)
                stored = row["driver_status"]
                if stored != (expected.value if expected else None):
                    raise StatusConflictError(order_id, "driver_status", expected, stored)
                row = await conn.fetchrow(
                    f"""
                    UPDATE orders SET driver_status = $1, updated_at = NOW(){stamp_clause}
                    WHERE id = $2
                    RETURNING *;
                    """,
                    status.value,
                    order_id,
                )
        return _row_to_order(row)
