"""
Prometheus metrics: status transitions (API), broker notifications, deliveries (worker), queue depth (SQS).
"""
from prometheus_client import Counter, Gauge, generate_latest

# API: accepted transitions by kind ("order" | "driver") and target status
status_transitions_total = Counter(
    "status_transitions_total",
    "Total status transitions persisted",
    ["kind", "status"],
)
status_transitions_rejected_total = Counter(
    "status_transitions_rejected_total",
    "Total status change requests rejected, by error kind",
    ["kind", "error"],
)

# Broker sync enqueue outcomes on the request path: "queued" | "failed" | "timeout"
broker_notifications_total = Counter(
    "broker_notifications_total",
    "Broker status notifications by enqueue outcome",
    ["outcome"],
)

# Worker: delivery outcomes
messages_processed_total = Counter(
    "messages_processed_total",
    "Total notifications delivered to the broker (or skipped as duplicates)",
)
messages_failed_total = Counter(
    "messages_failed_total",
    "Total notification deliveries that failed (retried or sent to DLQ)",
)
messages_dlq_total = Counter(
    "messages_dlq_total",
    "Total notifications moved to DLQ after max retries",
)

# SQS queue depth (when using SQS)
sqs_queue_messages_waiting = Gauge(
    "sqs_queue_messages_waiting",
    "Approximate number of messages waiting in SQS (main queue)",
)
sqs_queue_messages_in_flight = Gauge(
    "sqs_queue_messages_in_flight",
    "Approximate number of messages in flight (received but not yet deleted)",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
