"""
Prometheus metrics: orders created, status transitions (applied and rejected), assignments,
notification publish failures.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders created by managers",
)

# State machine outcomes
order_status_transitions_total = Counter(
    "order_status_transitions_total",
    "Total order status transitions committed",
    ["from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total status changes rejected because the transition is not in the lifecycle table",
    ["current_status", "attempted_status"],
)

# Assignment engine outcomes
assignments_total = Counter(
    "assignments_total",
    "Total delivery partner assignments committed",
)
assignments_failed_total = Counter(
    "assignments_failed_total",
    "Total assignment attempts rejected or rolled back",
    ["reason"],
)

# Best-effort event publishing
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total events that could not be published (mutation still committed)",
    ["channel"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
