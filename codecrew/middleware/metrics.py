"""Prometheus metrics for the HTTP surface and the orchestration pipeline."""

import time
from typing import Awaitable, Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


# HTTP
http_requests_total = Counter(
    'codecrew_http_requests_total',
    'HTTP requests by route and status',
    ['method', 'route', 'status']
)

http_request_duration_seconds = Histogram(
    'codecrew_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'route'],
    buckets=[0.05, 0.25, 1.0, 5.0, 30.0, 120.0, 600.0]
)

http_requests_in_progress = Gauge(
    'codecrew_http_requests_in_progress',
    'HTTP requests being served',
    ['method']
)

# Pipeline
pipeline_runs_total = Counter(
    'codecrew_pipeline_runs_total',
    'Total orchestration pipeline runs',
    ['mode', 'status']  # status: success/failed
)

pipeline_duration_seconds = Histogram(
    'codecrew_pipeline_duration_seconds',
    'Orchestration pipeline duration in seconds',
    ['mode'],
    buckets=[0.1, 1, 5, 10, 30, 60, 120, 300, 600]
)

cache_lookups_total = Counter(
    'codecrew_cache_lookups_total',
    'Result cache lookups',
    ['tier', 'outcome']  # outcome: hit/miss/error
)

subtasks_total = Counter(
    'codecrew_subtasks_total',
    'Executed sub-tasks',
    ['capability', 'status']
)

subtask_duration_seconds = Histogram(
    'codecrew_subtask_duration_seconds',
    'Sub-task duration in seconds',
    ['capability'],
    buckets=[1, 5, 10, 30, 60, 120, 300]
)

repair_attempts_total = Counter(
    'codecrew_repair_attempts_total',
    'Fixer calls made by the self-healing verifier',
    ['capability']
)

merge_conflicts_total = Counter(
    'codecrew_merge_conflicts_total',
    'Same-path conflicts detected while merging',
    ['resolution']  # resolution: consolidated/last_write_wins
)


def route_label(request: Request) -> str:
    """Route template (``/orchestrate``), not the raw path, to bound label values."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware:
    """HTTP middleware recording request counts, durations and concurrency."""

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        in_progress = http_requests_in_progress.labels(method=method)
        in_progress.inc()
        start = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = route_label(request)
            http_requests_total.labels(method=method, route=route, status=str(status_code)).inc()
            http_request_duration_seconds.labels(method=method, route=route).observe(time.time() - start)
            in_progress.dec()


def get_metrics() -> Response:
    """Current metrics in the Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Helper functions to track pipeline metrics

def track_pipeline_completed(mode: str, status: str, duration: float):
    """Track pipeline completion."""
    pipeline_runs_total.labels(mode=mode, status=status).inc()
    pipeline_duration_seconds.labels(mode=mode).observe(duration)


def track_cache_lookup(tier: str, outcome: str):
    """Track a cache tier lookup."""
    cache_lookups_total.labels(tier=tier, outcome=outcome).inc()


def track_subtask_completed(capability: str, success: bool, duration: float):
    """Track sub-task completion."""
    subtasks_total.labels(capability=capability, status="completed" if success else "failed").inc()
    subtask_duration_seconds.labels(capability=capability).observe(duration)


def track_repair_attempt(capability: str):
    """Track one fixer call."""
    repair_attempts_total.labels(capability=capability).inc()


def track_merge_conflicts(count: int, resolution: str):
    """Track merge conflicts and how they were resolved."""
    if count:
        merge_conflicts_total.labels(resolution=resolution).inc(count)
