"""
Status lifecycle errors. Each carries a stable kind, the offending value(s) and the HTTP status
the API layer answers with. The validator and formatter only raise the pure-logic kinds;
store and queue failures surface from the coordinator wrapped as PersistenceFailureError.
"""
from typing import Any


class StatusLifecycleError(Exception):
    """Base class: kind + message + structured details."""
    kind = "status_lifecycle_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, "details": self.details}


class UnknownStatusError(StatusLifecycleError):
    """Value is not a member of the status enumeration."""
    kind = "unknown_status"
    status_code = 400

    def __init__(self, value: Any, enum_name: str = "status"):
        super().__init__(
            f"Unknown {enum_name}: {value!r}",
            details={"value": str(value), "enum": enum_name},
        )
        self.value = value


class InvalidRequestError(StatusLifecycleError):
    """Request is malformed before any status is looked at."""
    kind = "invalid_request"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message, details=details)


class InvalidTransitionError(StatusLifecycleError):
    kind = "invalid_transition"
    status_code = 400

    def __init__(self, current: Any, requested: Any, reason: str):
        super().__init__(
            f"Cannot transition from {_value(current)} to {_value(requested)}: {reason}",
            details={"current": _value(current), "requested": _value(requested), "reason": reason},
        )
        self.current = current
        self.requested = requested
        self.reason = reason


class ForbiddenError(StatusLifecycleError):
    kind = "forbidden"
    status_code = 403

    def __init__(self, role: Any, requested: Any, reason: str = "role may not change this status"):
        super().__init__(
            f"{_value(role)} may not transition to {_value(requested)}: {reason}",
            details={"role": _value(role), "requested": _value(requested), "reason": reason},
        )
        self.role = role
        self.requested = requested


class NotFoundError(StatusLifecycleError):
    kind = "not_found"
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}", details={"order_id": order_id})
        self.order_id = order_id


class StatusConflictError(StatusLifecycleError):
    """Stored status no longer matches the one the transition was validated against."""
    kind = "status_conflict"
    status_code = 409

    def __init__(self, order_id: str, field: str, expected: Any, actual: Any):
        super().__init__(
            f"Order {order_id} {field} changed concurrently: expected {_value(expected)}, found {_value(actual)}",
            details={"order_id": order_id, "field": field, "expected": _value(expected), "actual": _value(actual)},
        )
        self.order_id = order_id
        self.expected = expected
        self.actual = actual


class RequestCancelledError(StatusLifecycleError):
    kind = "request_cancelled"
    status_code = 499

    def __init__(self, order_id: str):
        super().__init__(
            f"Request for order {order_id} was cancelled before any write",
            details={"order_id": order_id},
        )
        self.order_id = order_id


class PersistenceFailureError(StatusLifecycleError):
    kind = "persistence_failure"
    status_code = 500

    def __init__(self, order_id: str, operation: str):
        super().__init__(
            f"Order store {operation} failed for order {order_id}",
            details={"order_id": order_id, "operation": operation},
        )
        self.order_id = order_id
        self.operation = operation


class PartialFailureError(StatusLifecycleError):
    """First write went through, the derived second write did not. Caller reconciles."""
    kind = "partial_failure"
    status_code = 500

    def __init__(self, order_id: str, succeeded: list[str], failed: str, order: Any = None):
        super().__init__(
            f"Order {order_id}: {', '.join(succeeded)} written but {failed} write failed",
            details={"order_id": order_id, "succeeded": list(succeeded), "failed": failed},
        )
        self.order_id = order_id
        self.succeeded = list(succeeded)
        self.failed = failed
        self.order = order


def _value(v: Any) -> Any:
    return getattr(v, "value", v)
