from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import AliasChoices, BaseModel, Field

from app.broker_sync import BrokerSync
from app.coordinator import Broker, change_driver_status, change_order_status
from app.db import OrderStore, PostgresOrderStore, get_pool
from app.errors import InvalidRequestError
from app.models import Actor, Order
from app.order_state import DRIVER_SEQUENCES, next_driver_status, parse_role
from app.status_display import driver_progress, format_driver_status, format_status

router = APIRouter(prefix="/orders", tags=["orders"])


class StatusChangeBody(BaseModel):
    # Raw values: the status parsers reject anything that is not a status
    status: Any = Field(default=None, description="Requested order status")
    driver_status: Any = Field(
        default=None,
        validation_alias=AliasChoices("driverStatus", "driver_status"),
        description="Requested driver status",
    )


async def get_order_store() -> OrderStore:
    return PostgresOrderStore(await get_pool())


def get_broker() -> Broker:
    return BrokerSync()


def get_actor(
    x_actor_role: str = Header(..., description="Role of the caller, e.g. ADMIN or DRIVER"),
    x_actor_id: str | None = Header(default=None, description="User id of the caller"),
) -> Actor:
    return Actor(role=parse_role(x_actor_role), user_id=x_actor_id)


def order_view(order: Order) -> dict:
    """
    Order plus the display metadata the dashboards render. driverProgress is None when the
    stored driver status is not a step of the order type (rows written by other services).
    """
    status_display = format_status(order.status)
    data = order.model_dump(mode="json")
    data["display"] = {
        "label": status_display.label,
        "colorToken": status_display.color_token,
        "iconToken": status_display.icon_token,
    }
    if order.driver_status is not None:
        driver_display = format_driver_status(order.driver_status)
        data["driverDisplay"] = {
            "label": driver_display.label,
            "colorToken": driver_display.color_token,
            "iconToken": driver_display.icon_token,
        }
    else:
        data["driverDisplay"] = None
    in_sequence = order.driver_status is None or order.driver_status in DRIVER_SEQUENCES[order.order_type]
    data["driverProgress"] = driver_progress(order.order_type, order.driver_status) if in_sequence else None
    upcoming = next_driver_status(order.order_type, order.driver_status)
    data["nextDriverStatus"] = upcoming.value if upcoming else None
    return data


@router.get("/{order_id}")
async def get_order(order_id: str, store: OrderStore = Depends(get_order_store)) -> dict:
    order = await store.get_order(order_id)
    return order_view(order)


@router.patch("/{order_id}/status")
async def update_status(
    order_id: str,
    body: StatusChangeBody,
    request: Request,
    actor: Actor = Depends(get_actor),
    store: OrderStore = Depends(get_order_store),
    broker: Broker = Depends(get_broker),
) -> dict:
    """
    Change the order status ({"status": ...}) or the driver status ({"driverStatus": ...}).
    Exactly one of the two must be given.
    """
    if (body.status is None) == (body.driver_status is None):
        raise InvalidRequestError(
            "Provide exactly one of 'status' or 'driverStatus'",
            fields=["status", "driverStatus"],
        )

    if body.status is not None:
        order = await change_order_status(
            store, broker, order_id, body.status, actor, is_cancelled=request.is_disconnected
        )
    else:
        order = await change_driver_status(
            store, broker, order_id, body.driver_status, actor, is_cancelled=request.is_disconnected
        )
    return order_view(order)
