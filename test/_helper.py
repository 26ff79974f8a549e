"""
Shared fakes for the test modules: an in-memory order store with the same locking and
compare-and-swap contract as PostgresOrderStore, and a broker that records notifications.
"""
import asyncio
from collections import defaultdict
from datetime import datetime, timezone

from app.errors import NotFoundError, StatusConflictError
from app.models import Order
from app.order_state import DriverStatus, OrderStatus, OrderType

_DRIVER_TIMESTAMPS = {
    DriverStatus.ASSIGNED: "assigned_at",
    DriverStatus.STARTED: "pickup_at",
    DriverStatus.PICKED_UP: "pickup_at",
    DriverStatus.ARRIVED_TO_CLIENT: "arrival_at",
    DriverStatus.COMPLETED: "completed_at",
}


def make_order(
    order_id: str = "ord-1",
    status: OrderStatus = OrderStatus.ACTIVE,
    driver_status: DriverStatus | None = None,
    driver_id: str | None = None,
    order_type: OrderType = OrderType.CATERING,
) -> Order:
    return Order(
        id=order_id,
        order_type=order_type,
        status=status,
        driver_status=driver_status,
        driver_id=driver_id,
        created_at=datetime.now(timezone.utc),
    )


class InMemoryOrderStore:
    def __init__(self, *orders: Order):
        self.orders: dict[str, Order] = {o.id: o for o in orders}
        self.writes: list[tuple[str, str, object]] = []  # (operation, order_id, status)
        self.fail_on: dict[str, Exception] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise self.fail_on[operation]

    async def get_order(self, order_id: str) -> Order:
        self._maybe_fail("get_order")
        await asyncio.sleep(0)  # let racing callers read before either writes
        if order_id not in self.orders:
            raise NotFoundError(order_id)
        return self.orders[order_id]

    async def update_order_status(self, order_id, status, expected=None) -> Order:
        self.writes.append(("update_order_status", order_id, status))
        self._maybe_fail("update_order_status")
        async with self._locks[order_id]:
            if order_id not in self.orders:
                raise NotFoundError(order_id)
            order = self.orders[order_id]
            if expected is not None and order.status != expected:
                raise StatusConflictError(order_id, "status", expected, order.status)
            now = datetime.now(timezone.utc)
            update = {"status": status, "updated_at": now}
            if status == OrderStatus.COMPLETED:
                update["completed_at"] = now
            self.orders[order_id] = order.model_copy(update=update)
            return self.orders[order_id]

    async def update_driver_status(self, order_id, status, expected=None) -> Order:
        self.writes.append(("update_driver_status", order_id, status))
        self._maybe_fail("update_driver_status")
        async with self._locks[order_id]:
            if order_id not in self.orders:
                raise NotFoundError(order_id)
            order = self.orders[order_id]
            if order.driver_status != expected:
                raise StatusConflictError(order_id, "driver_status", expected, order.driver_status)
            now = datetime.now(timezone.utc)
            update = {"driver_status": status, "updated_at": now}
            if status in _DRIVER_TIMESTAMPS:
                update[_DRIVER_TIMESTAMPS[status]] = now
            self.orders[order_id] = order.model_copy(update=update)
            return self.orders[order_id]


class RecordingBroker:
    def __init__(self, error: Exception | None = None, delay: float = 0.0):
        self.notifications: list[tuple[Order, OrderStatus]] = []
        self.error = error
        self.delay = delay

    async def notify_status_change(self, order: Order, new_status: OrderStatus) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.notifications.append((order, new_status))
