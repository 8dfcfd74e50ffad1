"""Prometheus metrics middleware and delegation counters."""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


http_requests_total = Counter(
    'taskrelay_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'taskrelay_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

tasks_received_total = Counter(
    'taskrelay_tasks_received_total',
    'Task submissions by outcome',
    ['outcome']  # accepted / rejected / error
)

assignments_processed_total = Counter(
    'taskrelay_assignments_processed_total',
    'Assignments processed by terminal status',
    ['status']
)

sweep_duration_seconds = Histogram(
    'taskrelay_sweep_duration_seconds',
    'Duration of one pending-assignment sweep',
    buckets=[0.1, 1, 5, 10, 30, 60, 120, 300]
)

event_subscribers = Gauge(
    'taskrelay_event_subscribers',
    'Connected WebSocket event subscribers'
)


class MetricsMiddleware:
    """Collects request count and latency per route template."""

    async def __call__(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Route templates keep task ids out of the label set
            route = request.scope.get("route")
            endpoint = getattr(route, "path", None) or "unmatched"
            http_requests_total.labels(method=method, endpoint=endpoint, status=status_code).inc()
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.time() - start_time
            )


def get_metrics() -> Response:
    """Prometheus exposition of the default registry."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def track_task_received(outcome: str) -> None:
    tasks_received_total.labels(outcome=outcome).inc()


def track_assignment_processed(status: str) -> None:
    assignments_processed_total.labels(status=status).inc()


def track_sweep(duration: float) -> None:
    sweep_duration_seconds.observe(duration)


def track_subscriber_connected() -> None:
    event_subscribers.inc()


def track_subscriber_disconnected() -> None:
    event_subscribers.dec()
