"""
Broker sync: push order status notifications to the delivery queue.
Backend: Redis (LPUSH) or AWS SQS when SQS_QUEUE_URL is set. The worker delivers them to the broker.
"""
import json
import logging

from pydantic import ValidationError

from app.config import settings
from app.models import Order, StatusNotification
from app.order_state import OrderStatus
from app.redis_client import get_redis
from app.sqs_client import replay_dlq_to_main, send_message

logger = logging.getLogger(__name__)

BROKER_QUEUE_KEY = "queue:broker_notifications"
BROKER_DLQ_KEY = "queue:broker_notifications:dlq"


async def push_to_queue(notification: StatusNotification) -> None:
    body = notification.model_dump(mode="json")
    if settings.sqs_queue_url:
        await send_message(body)
    else:
        r = await get_redis()
        await r.lpush(BROKER_QUEUE_KEY, json.dumps(body))


class BrokerSync:
    """Queue-backed broker sync collaborator used by the coordinator."""

    async def notify_status_change(self, order: Order, new_status: OrderStatus) -> None:
        notification = StatusNotification.for_order(order, new_status)
        await push_to_queue(notification)
        logger.info(
            "Queued broker notification %s order_id=%s status=%s",
            notification.notification_id,
            order.id,
            new_status.value,
        )


async def replay_redis_dlq(limit: int = 100) -> int:
    """Move up to `limit` notifications from the Redis DLQ back to the main queue, attempts reset."""
    r = await get_redis()
    replayed = 0
    while replayed < limit:
        raw = await r.rpop(BROKER_DLQ_KEY)
        if raw is None:
            break
        replayed += 1
        try:
            notification = StatusNotification.model_validate_json(raw)
        except ValidationError:
            logger.warning("Dropping unparseable DLQ message: %s", raw[:200])
            continue
        await push_to_queue(notification.model_copy(update={"attempts": 0}))
    return replayed


async def replay_dlq(limit: int = 100) -> int:
    if settings.sqs_queue_url:
        return await replay_dlq_to_main(limit=limit)
    return await replay_redis_dlq(limit=limit)
