"""
Order status coordinator: load, validate, persist, notify.

The order store is the only durable point of truth. Nothing is retried here: a retried
transition could notify the broker twice, so retries are the caller's decision.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from app.config import settings
from app.db import OrderStore
from app.errors import (
    NotFoundError,
    PartialFailureError,
    PersistenceFailureError,
    RequestCancelledError,
    StatusConflictError,
    StatusLifecycleError,
)
from app.metrics import broker_notifications_total, status_transitions_rejected_total, status_transitions_total
from app.models import Actor, Order
from app.order_state import (
    DriverStatus,
    OrderStatus,
    derived_order_status,
    parse_driver_status,
    parse_order_status,
    validate_driver_transition,
    validate_transition,
)

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], Awaitable[bool]]


class Broker(Protocol):
    async def notify_status_change(self, order: Order, new_status: OrderStatus) -> None: ...


async def _store_call(order_id: str, operation: str, call: Awaitable[Order]) -> Order:
    """Await a store call; anything that is not a lifecycle error becomes PersistenceFailureError."""
    try:
        return await call
    except (NotFoundError, StatusConflictError):
        raise
    except Exception as e:
        logger.exception("Order store %s failed for order_id=%s", operation, order_id)
        raise PersistenceFailureError(order_id, operation) from e


async def _ensure_not_cancelled(order_id: str, is_cancelled: CancelCheck | None) -> None:
    if is_cancelled is not None and await is_cancelled():
        logger.info("Request cancelled before write, order_id=%s", order_id)
        raise RequestCancelledError(order_id)


async def _notify_broker(broker: Broker, order: Order, new_status: OrderStatus) -> None:
    """Best-effort: the status change is already persisted, so failures are logged and counted only."""
    try:
        await asyncio.wait_for(
            broker.notify_status_change(order, new_status),
            timeout=settings.broker_notify_timeout_seconds,
        )
    except asyncio.TimeoutError:
        broker_notifications_total.labels(outcome="timeout").inc()
        logger.warning("Broker notification timed out for order_id=%s status=%s", order.id, new_status.value)
    except Exception:
        broker_notifications_total.labels(outcome="failed").inc()
        logger.exception("Broker notification failed for order_id=%s status=%s", order.id, new_status.value)
    else:
        broker_notifications_total.labels(outcome="queued").inc()


async def change_order_status(
    store: OrderStore,
    broker: Broker,
    order_id: str,
    requested: OrderStatus | str,
    actor: Actor,
    *,
    is_cancelled: CancelCheck | None = None,
) -> Order:
    """
    Move an order to `requested` on behalf of `actor`.

    Raises UnknownStatusError, ForbiddenError, InvalidTransitionError, NotFoundError,
    StatusConflictError, RequestCancelledError or PersistenceFailureError. Nothing is written
    unless validation passes, and the broker is notified only after the write succeeded.
    """
    try:
        order = await _store_call(order_id, "get_order", store.get_order(order_id))
        validate_transition(order.status, requested, actor.role)
        new_status = parse_order_status(requested)
        await _ensure_not_cancelled(order_id, is_cancelled)
        updated = await _store_call(
            order_id,
            "update_order_status",
            store.update_order_status(order_id, new_status, expected=order.status),
        )
    except StatusLifecycleError as e:
        status_transitions_rejected_total.labels(kind="order", error=e.kind).inc()
        raise

    status_transitions_total.labels(kind="order", status=new_status.value).inc()
    logger.info(
        "Order %s status %s -> %s by %s",
        order_id, order.status.value, new_status.value, actor.role.value,
    )
    await _notify_broker(broker, updated, new_status)
    return updated


async def change_driver_status(
    store: OrderStore,
    broker: Broker,
    order_id: str,
    requested: DriverStatus | str,
    actor: Actor,
    *,
    is_cancelled: CancelCheck | None = None,
) -> Order:
    """
    Move an order's driver status to `requested` on behalf of `actor`.

    The order status follows the driver with a second write: IN_PROGRESS once the driver reaches
    the vendor or the client, COMPLETED when the delivery completes (see derived_order_status). If that
    second write fails, PartialFailureError reports the driver status write as the one that
    succeeded; nothing is rolled back and the broker is not notified.
    """
    try:
        order = await _store_call(order_id, "get_order", store.get_order(order_id))
        validate_driver_transition(order, requested, actor)
        new_status = parse_driver_status(requested)
        await _ensure_not_cancelled(order_id, is_cancelled)
        updated = await _store_call(
            order_id,
            "update_driver_status",
            store.update_driver_status(order_id, new_status, expected=order.driver_status),
        )
    except StatusLifecycleError as e:
        status_transitions_rejected_total.labels(kind="driver", error=e.kind).inc()
        raise

    status_transitions_total.labels(kind="driver", status=new_status.value).inc()
    logger.info(
        "Order %s driver status %s -> %s by %s",
        order_id,
        order.driver_status.value if order.driver_status else None,
        new_status.value,
        actor.role.value,
    )

    derived = derived_order_status(updated.status, new_status)
    if derived is None:
        return updated

    try:
        followed = await store.update_order_status(order_id, derived, expected=updated.status)
    except Exception as e:
        status_transitions_rejected_total.labels(kind="order", error=PartialFailureError.kind).inc()
        logger.exception(
            "Driver status %s written for order %s but order status write to %s failed",
            new_status.value, order_id, derived.value,
        )
        raise PartialFailureError(order_id, succeeded=["driver_status"], failed="order_status", order=updated) from e

    status_transitions_total.labels(kind="order", status=derived.value).inc()
    logger.info(
        "Order %s status %s -> %s (driver %s)",
        order_id, updated.status.value, derived.value, new_status.value,
    )
    await _notify_broker(broker, followed, derived)
    return followed
