"""Prometheus metrics for the prompt engine.

Engine counters are incremented from the core components; the HTTP
middleware records request latency per method/path/status.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

REQUEST_LATENCY = Histogram(
    "prompt_engine_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

GENERATION_REQUESTS = Counter(
    "prompt_engine_generation_requests_total",
    "Generation requests issued by the conversation engine",
    labelnames=("operation", "outcome"),
)

PERSISTENCE_WRITES = Counter(
    "prompt_engine_persistence_writes_total",
    "Debounced conversation writes",
    labelnames=("outcome",),
)

TAILORING_RUNS = Counter(
    "prompt_engine_tailoring_runs_total",
    "Destination tailoring runs",
    labelnames=("destination", "outcome"),
)


def sanitize_path(path: str) -> str:
    """Reduce /prompts/{id}/... to its top-level segment to keep label cardinality low."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
