import time
from typing import Callable

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.requests import Request
from starlette.responses import Response


REQUEST_COUNTER = Counter(
    "api_requests_total",
    "HTTP requests total",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "api_request_duration_seconds",
    "HTTP request latency",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

BACKEND_REQUEST_COUNTER = Counter(
    "backend_requests_total",
    "Readeck API calls",
    ["operation", "outcome"],
)

IMAGE_CONVERSION_COUNTER = Counter(
    "image_conversions_total",
    "Image conversions by outcome",
    ["outcome"],
)

DEVICE_ACTION_COUNTER = Counter(
    "device_actions_total",
    "Device send actions",
    ["action", "result"],
)


KNOWN_PATHS = {
    "/api/kobo/get",
    "/api/kobo/download",
    "/api/kobo/send",
    "/api/convert-image",
    "/status",
    "/metrics",
}


async def metrics_endpoint(_: Request) -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


async def request_metrics_middleware(request: Request, call_next: Callable):
    start = time.time()
    response = await call_next(request)
    elapsed = time.time() - start
    path = request.url.path
    # avoid high cardinality from probes of unknown paths
    if response.status_code == 404 and path not in KNOWN_PATHS:
        path = "unmatched"
    REQUEST_COUNTER.labels(request.method, path, str(response.status_code)).inc()
    REQUEST_LATENCY.observe(elapsed)
    return response
