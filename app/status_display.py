"""
Human-readable labels and presentation tokens for order and driver statuses.
"""
from typing import Any, NamedTuple

from app.errors import UnknownStatusError
from app.order_state import DRIVER_SEQUENCES, DriverStatus, OrderStatus, OrderType


class StatusDisplay(NamedTuple):
    label: str
    color_token: str
    icon_token: str


def status_label(value: str) -> str:
    """IN_PROGRESS -> "In Progress"."""
    return " ".join(word.capitalize() for word in value.split("_") if word)


def _order_tokens(status: OrderStatus) -> tuple[str, str]:
    match status:
        case OrderStatus.PENDING:
            return "gray", "clock"
        case OrderStatus.CONFIRMED:
            return "sky", "check-circle"
        case OrderStatus.ACTIVE:
            return "amber", "alert-circle"
        case OrderStatus.ASSIGNED:
            return "blue", "truck"
        case OrderStatus.IN_PROGRESS:
            return "indigo", "loader"
        case OrderStatus.DELIVERED:
            return "teal", "package-check"
        case OrderStatus.COMPLETED:
            return "emerald", "clipboard-list"
        case OrderStatus.CANCELLED:
            return "red", "alert-circle"
    raise UnknownStatusError(status, "order status")


def _driver_tokens(status: DriverStatus) -> tuple[str, str]:
    match status:
        case DriverStatus.ASSIGNED:
            return "blue", "car"
        case DriverStatus.STARTED:
            return "indigo", "navigation"
        case DriverStatus.ARRIVED_AT_VENDOR:
            return "amber", "store"
        case DriverStatus.PICKED_UP:
            return "violet", "package"
        case DriverStatus.EN_ROUTE_TO_CLIENT:
            return "sky", "truck"
        case DriverStatus.ARRIVED_TO_CLIENT:
            return "teal", "flag"
        case DriverStatus.COMPLETED:
            return "emerald", "check-circle"
    raise UnknownStatusError(status, "driver status")


def format_status(status: Any) -> StatusDisplay:
    """
    Label, color and icon for an OrderStatus. Only enum members are accepted:
    callers validate raw strings with parse_order_status first.
    """
    if not isinstance(status, OrderStatus):
        raise UnknownStatusError(status, "order status")
    color, icon = _order_tokens(status)
    return StatusDisplay(status_label(status.value), color, icon)


def format_driver_status(status: Any) -> StatusDisplay:
    if not isinstance(status, DriverStatus):
        raise UnknownStatusError(status, "driver status")
    color, icon = _driver_tokens(status)
    return StatusDisplay(status_label(status.value), color, icon)


def driver_progress(order_type: OrderType, status: DriverStatus | None) -> int:
    """Percent through the order type's driver sequence: ASSIGNED (or none yet) is 0, COMPLETED is 100."""
    if status is None:
        return 0
    if not isinstance(status, DriverStatus):
        raise UnknownStatusError(status, "driver status")
    sequence = DRIVER_SEQUENCES[order_type]
    if status not in sequence:
        raise UnknownStatusError(status, f"{order_type.value} driver status")
    return round(100 * sequence.index(status) / (len(sequence) - 1))
