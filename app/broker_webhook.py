"""
HTTP delivery of status notifications to the broker webhook.
"""
import httpx

from app.config import settings
from app.models import StatusNotification


class BrokerDeliveryError(Exception):
    """Broker did not acknowledge the notification. The worker retries or dead-letters it."""


async def deliver_notification(client: httpx.AsyncClient, notification: StatusNotification) -> None:
    if not settings.broker_webhook_url:
        raise BrokerDeliveryError("BROKER_WEBHOOK_URL is not configured")
    try:
        resp = await client.post(
            settings.broker_webhook_url,
            json={
                "notificationId": notification.notification_id,
                "orderId": notification.order_id,
                "orderType": notification.order_type.value,
                "status": notification.status.value,
                "driverStatus": notification.driver_status.value if notification.driver_status else None,
                "changedAt": notification.changed_at.isoformat(),
            },
            headers={"Idempotency-Key": notification.notification_id},
            timeout=settings.broker_webhook_timeout_seconds,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise BrokerDeliveryError(f"{type(e).__name__}: {e}") from e
