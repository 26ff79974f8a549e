"""
Worker: pull broker notifications from Redis or AWS SQS, deliver them to the broker webhook.
- Redis: exponential backoff + manual DLQ. SQS: don't delete on failure; SQS redrive to DLQ after max receives.
- Redelivered notifications already acknowledged by the broker are skipped (notification_id dedupe).
- Prometheus /metrics on port 9090 (worker metrics).
- Graceful shutdown on SIGTERM.
Run: python -m app.worker
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time

import httpx
import redis.asyncio as redis
from pydantic import ValidationError

from app.broker_sync import BROKER_DLQ_KEY, BROKER_QUEUE_KEY
from app.broker_webhook import deliver_notification
from app.config import settings
from app.metrics import messages_dlq_total, messages_failed_total, messages_processed_total
from app.models import StatusNotification
from app.redis_client import close_redis, mark_delivered, was_delivered
from app.sqs_client import change_message_visibility, delete_message, receive_messages

logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
GRACEFUL_SHUTDOWN_WAIT_SEC = 30
WORKER_METRICS_PORT = 9090


def _start_metrics_server() -> None:
    from prometheus_client import start_http_server
    start_http_server(WORKER_METRICS_PORT)


def parse_notification(raw: str) -> StatusNotification | None:
    try:
        return StatusNotification.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Invalid notification from queue: %s", e)
        return None


async def handle_notification(client: httpx.AsyncClient, notification: StatusNotification) -> bool:
    """
    Deliver one notification. Returns True if delivered, False if it was a duplicate.
    Raises on delivery failure so the caller can retry.
    """
    if await was_delivered(notification.notification_id):
        logger.info("Duplicate notification %s (already delivered), skipped", notification.notification_id)
        return False
    await deliver_notification(client, notification)
    await mark_delivered(notification.notification_id)
    logger.info(
        "Delivered notification %s order_id=%s status=%s",
        notification.notification_id,
        notification.order_id,
        notification.status.value,
    )
    return True


async def process_one_redis(
    r: redis.Redis,
    client: httpx.AsyncClient,
    raw: str,
    sem: asyncio.Semaphore,
) -> None:
    notification = parse_notification(raw)
    if notification is None:
        return

    async with sem:
        try:
            await handle_notification(client, notification)
            messages_processed_total.inc()
        except Exception as e:
            messages_failed_total.inc()
            attempts = notification.attempts
            logger.exception(
                "Failed to deliver notification %s (attempt %d): %s",
                notification.notification_id, attempts + 1, e,
            )
            next_attempts = attempts + 1
            if next_attempts >= settings.worker_max_retries:
                dlq_message = notification.model_dump(mode="json")
                dlq_message.update({
                    "attempts": next_attempts,
                    "last_error": str(e),
                    "failed_at": time.time(),
                })
                await r.lpush(BROKER_DLQ_KEY, json.dumps(dlq_message))
                messages_dlq_total.inc()
                logger.warning(
                    "Moved notification %s to DLQ after %d attempts",
                    notification.notification_id, settings.worker_max_retries,
                )
            else:
                backoff_sec = 2 ** attempts
                logger.info(
                    "Re-queuing notification %s in %ds (attempt %d/%d)",
                    notification.notification_id, backoff_sec, next_attempts, settings.worker_max_retries,
                )
                await asyncio.sleep(backoff_sec)
                retry = notification.model_copy(update={"attempts": next_attempts})
                await r.lpush(BROKER_QUEUE_KEY, retry.model_dump_json())


async def process_one_sqs(
    client: httpx.AsyncClient,
    body: str,
    receipt_handle: str,
    receive_count: int,
    sem: asyncio.Semaphore,
) -> None:
    notification = parse_notification(body)
    if notification is None:
        await asyncio.to_thread(delete_message, receipt_handle)
        return

    async with sem:
        try:
            await handle_notification(client, notification)
            messages_processed_total.inc()
            await asyncio.to_thread(delete_message, receipt_handle)
        except Exception as e:
            messages_failed_total.inc()
            logger.exception(
                "Failed to deliver notification %s (receive #%d): %s",
                notification.notification_id, receive_count, e,
            )
            # Don't delete: message reappears after visibility timeout; after max receives SQS moves it to DLQ
            backoff = min(2 ** receive_count, 900)
            await asyncio.to_thread(change_message_visibility, receipt_handle, backoff)


async def _drain(tasks: set[asyncio.Task]) -> None:
    if not tasks:
        return
    logger.info(
        "Graceful shutdown: waiting for %d in-flight task(s) (max %ds) ...",
        len(tasks), GRACEFUL_SHUTDOWN_WAIT_SEC,
    )
    _, pending = await asyncio.wait(tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC, return_when=asyncio.ALL_COMPLETED)
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def run_worker_redis(shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=Redis. Listening on %s (concurrency=%d, max_retries=%d) ...",
        BROKER_QUEUE_KEY,
        settings.worker_concurrency,
        settings.worker_max_retries,
    )
    r = redis.from_url(settings.redis_url, decode_responses=True)
    tasks: set[asyncio.Task] = set()
    async with httpx.AsyncClient() as client:
        try:
            while not shutdown_event.is_set():
                result = await r.brpop(BROKER_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
                if result is None:
                    continue
                _key, raw = result
                t = asyncio.create_task(process_one_redis(r, client, raw, sem))
                tasks.add(t)
                t.add_done_callback(tasks.discard)
        finally:
            await _drain(tasks)
            await r.aclose()
            await close_redis()
            logger.info("Worker stopped.")


async def run_worker_sqs(shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=SQS. Queue=%s (concurrency=%d) ...",
        settings.sqs_queue_url,
        settings.worker_concurrency,
    )
    tasks: set[asyncio.Task] = set()
    async with httpx.AsyncClient() as client:
        try:
            while not shutdown_event.is_set():
                messages = await asyncio.to_thread(receive_messages, 10, 5)
                for msg in messages:
                    body = msg.get("Body") or "{}"
                    receipt = msg.get("ReceiptHandle") or ""
                    attrs = msg.get("Attributes") or {}
                    receive_count = int(attrs.get("ApproximateReceiveCount", 1))
                    t = asyncio.create_task(process_one_sqs(client, body, receipt, receive_count, sem))
                    tasks.add(t)
                    t.add_done_callback(tasks.discard)
        finally:
            await _drain(tasks)
            await close_redis()
            logger.info("Worker stopped.")


async def run_worker(shutdown_event: asyncio.Event) -> None:
    if settings.sqs_queue_url:
        await run_worker_sqs(shutdown_event)
    else:
        await run_worker_redis(shutdown_event)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stdout,
    )
    if not settings.broker_webhook_url:
        logger.warning("BROKER_WEBHOOK_URL is not set: every delivery will fail and end up in the DLQ")

    threading.Thread(target=_start_metrics_server, daemon=True).start()
    logger.info("Metrics server listening on port %s", WORKER_METRICS_PORT)

    shutdown_event = asyncio.Event()

    def on_signal():
        shutdown_event.set()

    loop = asyncio.new_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, on_signal)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(run_worker(shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
