"""
Order and driver status lifecycle. Valid transitions enforce business rules.
Pure decision functions: nothing here touches the store or the broker.
"""
from enum import Enum
from typing import Any

from app.errors import ForbiddenError, InvalidTransitionError, UnknownStatusError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class DriverStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    STARTED = "STARTED"
    ARRIVED_AT_VENDOR = "ARRIVED_AT_VENDOR"
    PICKED_UP = "PICKED_UP"
    EN_ROUTE_TO_CLIENT = "EN_ROUTE_TO_CLIENT"
    ARRIVED_TO_CLIENT = "ARRIVED_TO_CLIENT"
    COMPLETED = "COMPLETED"


class OrderType(str, Enum):
    CATERING = "catering"
    ON_DEMAND = "on_demand"


class Role(str, Enum):
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    HELPDESK = "HELPDESK"
    DRIVER = "DRIVER"
    VENDOR = "VENDOR"
    CLIENT = "CLIENT"


TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

# Roles allowed to move an order to any non-terminal status
STAFF_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.SUPER_ADMIN, Role.HELPDESK})

# Order type -> driver status sequence, each step only reachable from the previous one
DRIVER_SEQUENCES: dict[OrderType, tuple[DriverStatus, ...]] = {
    OrderType.CATERING: (
        DriverStatus.ASSIGNED,
        DriverStatus.STARTED,
        DriverStatus.ARRIVED_TO_CLIENT,
        DriverStatus.COMPLETED,
    ),
    OrderType.ON_DEMAND: (
        DriverStatus.ASSIGNED,
        DriverStatus.ARRIVED_AT_VENDOR,
        DriverStatus.PICKED_UP,
        DriverStatus.EN_ROUTE_TO_CLIENT,
        DriverStatus.ARRIVED_TO_CLIENT,
        DriverStatus.COMPLETED,
    ),
}

# Driver status -> order status the order follows it to
DRIVER_STATUS_TO_ORDER_STATUS: dict[DriverStatus, OrderStatus] = {
    DriverStatus.ARRIVED_AT_VENDOR: OrderStatus.IN_PROGRESS,
    DriverStatus.PICKED_UP: OrderStatus.IN_PROGRESS,
    DriverStatus.EN_ROUTE_TO_CLIENT: OrderStatus.IN_PROGRESS,
    DriverStatus.ARRIVED_TO_CLIENT: OrderStatus.IN_PROGRESS,
    DriverStatus.COMPLETED: OrderStatus.COMPLETED,
}


def _parse(enum_cls: type[Enum], value: Any, enum_name: str):
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise UnknownStatusError(value, enum_name)
    normalized = value.strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return enum_cls(normalized)
    except ValueError:
        raise UnknownStatusError(value, enum_name) from None


def parse_order_status(value: Any) -> OrderStatus:
    """Accept an OrderStatus or its string value ("in_progress", "IN-PROGRESS", ...)."""
    return _parse(OrderStatus, value, "order status")


def parse_driver_status(value: Any) -> DriverStatus:
    return _parse(DriverStatus, value, "driver status")


def parse_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().upper())
    except ValueError:
        raise ForbiddenError(value, None, "unknown role") from None


def validate_transition(current: OrderStatus, requested: Any, actor_role: Role) -> None:
    """
    Decide whether actor_role may move an order from current to requested.
    Raises UnknownStatusError, ForbiddenError or InvalidTransitionError; returns None when allowed.
    Drivers never change the order status directly: they advance the driver status instead.
    """
    requested = parse_order_status(requested)
    if actor_role not in STAFF_ROLES:
        raise ForbiddenError(actor_role, requested)
    if current in TERMINAL_ORDER_STATUSES:
        raise InvalidTransitionError(current, requested, "order is in a terminal status")
    if requested == current:
        raise InvalidTransitionError(current, requested, "order already has this status")


def is_valid_transition(current: OrderStatus, requested: Any, actor_role: Role) -> bool:
    """True if validate_transition would allow the change."""
    try:
        validate_transition(current, requested, actor_role)
    except (UnknownStatusError, ForbiddenError, InvalidTransitionError):
        return False
    return True


def next_driver_status(order_type: OrderType, current: DriverStatus | None) -> DriverStatus | None:
    """Next step of the order type's driver sequence; None once COMPLETED."""
    sequence = DRIVER_SEQUENCES[order_type]
    if current is None:
        return sequence[0]
    if current not in sequence:
        return None
    index = sequence.index(current)
    return sequence[index + 1] if index + 1 < len(sequence) else None


def derived_order_status(order_status: OrderStatus, driver_status: DriverStatus) -> OrderStatus | None:
    """
    Order status implied by the driver reaching driver_status, or None when the order
    status should stay as it is. A DELIVERED order is never moved back to IN_PROGRESS.
    """
    target = DRIVER_STATUS_TO_ORDER_STATUS.get(driver_status)
    if target is None or target == order_status or order_status in TERMINAL_ORDER_STATUSES:
        return None
    if target == OrderStatus.IN_PROGRESS and order_status == OrderStatus.DELIVERED:
        return None
    return target


def validate_driver_transition(order, requested: Any, actor) -> None:
    """
    Decide whether actor may move order.driver_status to requested.

    Staff roles may set any status of the order type's sequence (corrections included).
    A DRIVER must be the order's assigned driver and may only take the next step:
    no skipping, no going backward. Every other role is forbidden.
    """
    requested = parse_driver_status(requested)
    current = order.driver_status
    if actor.role == Role.DRIVER:
        if order.driver_id is None or actor.user_id != order.driver_id:
            raise ForbiddenError(actor.role, requested, "driver is not assigned to this order")
    elif actor.role not in STAFF_ROLES:
        raise ForbiddenError(actor.role, requested)

    if order.status in TERMINAL_ORDER_STATUSES:
        raise InvalidTransitionError(current, requested, f"order is {order.status.value}")
    if current == DriverStatus.COMPLETED:
        raise InvalidTransitionError(current, requested, "delivery is already completed")
    if requested == current:
        raise InvalidTransitionError(current, requested, "driver already has this status")

    sequence = DRIVER_SEQUENCES[order.order_type]
    if requested not in sequence:
        raise InvalidTransitionError(current, requested, f"not a step of {order.order_type.value} deliveries")
    if actor.role == Role.DRIVER and requested != next_driver_status(order.order_type, current):
        raise InvalidTransitionError(current, requested, "drivers advance one step at a time")
