"""
Order, actor and broker notification models shared by the store, coordinator and routes.
"""
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from app.order_state import DriverStatus, OrderStatus, OrderType, Role


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    order_type: OrderType = OrderType.CATERING
    status: OrderStatus = OrderStatus.PENDING
    driver_status: DriverStatus | None = None
    driver_id: str | None = None  # user id of the assigned driver
    created_at: datetime | None = None
    assigned_at: datetime | None = None
    pickup_at: datetime | None = None
    arrival_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


class Actor(BaseModel):
    """Who is asking. Never persisted; passed explicitly into every status change."""
    model_config = ConfigDict(frozen=True)

    role: Role
    user_id: str | None = None


class StatusNotification(BaseModel):
    """Message queued for the broker delivery worker."""
    notification_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    order_id: str
    order_type: OrderType
    status: OrderStatus
    driver_status: DriverStatus | None = None
    changed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0

    @classmethod
    def for_order(cls, order: Order, new_status: OrderStatus) -> "StatusNotification":
        return cls(
            order_id=order.id,
            order_type=order.order_type,
            status=new_status,
            driver_status=order.driver_status,
        )
