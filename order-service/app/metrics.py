import time

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests handled",
    ["service", "method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["service", "method", "path"],
)
ORDERS_CREATED = Counter(
    "orders_created_total",
    "Order creation attempts by outcome",
    ["status"],
)
ORDER_TRANSITIONS = Counter(
    "order_status_transitions_total",
    "Applied order status transitions",
    ["from_status", "to_status"],
)
COLLABORATOR_ERRORS = Counter(
    "collaborator_errors_total",
    "Failed calls to collaborator services",
    ["collaborator"],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, service_name: str):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            # label by route template so /orders/1 and /orders/2 share a series
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            REQUEST_COUNT.labels(self.service_name, request.method, path, str(status)).inc()
            REQUEST_LATENCY.labels(self.service_name, request.method, path).observe(time.perf_counter() - start)


def metrics_endpoint():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
