import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Define metrics (names follow Prometheus conventions)
REQ_COUNT = Counter("http_requests_total", "Total HTTP requests", ["path","method","code"])
REQ_LATENCY = Histogram("http_request_duration_seconds", "Request latency", ["path","method"])

# Upstream listing API
UPSTREAM_ATTEMPTS = Counter(
    "upstream_attempts_total", "Individual upstream HTTP attempts", ["outcome"]
)  # outcome: ok | client_error | server_error | network_error
UPSTREAM_CALLS = Counter(
    "upstream_calls_total", "Logical upstream calls after retries", ["result"]
)  # result: success | permanent | transient
UPSTREAM_LATENCY = Histogram("upstream_call_duration_seconds", "Logical upstream call latency incl. retries")
MALFORMED_LISTINGS = Counter("upstream_malformed_listings_total", "Listings dropped at the parse boundary")

# Market pulse
PULSE_BUCKET_DEGRADED = Counter(
    "market_pulse_bucket_degraded_total", "Pulse buckets degraded to zero", ["bucket"]
)
SNAPSHOT_REFRESHES = Counter(
    "market_pulse_refreshes_total", "Snapshot refreshes by trigger", ["reason"]
)  # reason: force | miss | stale

class PromMiddleware(BaseHTTPMiddleware):
    """
    Measures latency and counts requests.
    """
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - start

        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        method = request.method
        code = str(response.status_code)

        REQ_COUNT.labels(path=path, method=method, code=code).inc()
        REQ_LATENCY.labels(path=path, method=method).observe(elapsed)
        return response

async def metrics_endpoint(request: Request):
    """
    GET /v1/metrics — scraped by Prometheus.
    """
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
