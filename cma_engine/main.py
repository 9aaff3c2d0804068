import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Routers
from .routers.comparables import router as comparables_router
from .routers.market_pulse import router as market_pulse_router

# Core modules
from .core.config import settings
from .core.errors import ConfigurationError, UpstreamPermanentError, UpstreamTransientError
from .core.logging import configure_logging, CorrelationIdMiddleware
from .core.metrics import PromMiddleware, metrics_endpoint
from .services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)

def create_app(snapshot_cache: SnapshotCache | None = None) -> FastAPI:
    """
    App factory so tests and ASGI servers can instantiate cleanly.
    """
    configure_logging()  # Set up JSON logs + correlation-id filter

    app = FastAPI(
        title="Comparable Search & Market Pulse API",
        version="1.0.0",
        description="CMA comparable discovery and brokerage market pulse in front of the listing search API.",
    )
    app.state.snapshot_cache = snapshot_cache or SnapshotCache()

    allow_origins = [o.strip() for o in settings.ALLOW_ORIGINS.split(",")] if settings.ALLOW_ORIGINS else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag","X-Request-Id"],
    )

    # Observability middlewares
    app.add_middleware(CorrelationIdMiddleware)  # Adds/propagates X-Request-Id
    if settings.PROMETHEUS_ENABLED:
        app.add_middleware(PromMiddleware)       # Records req/latency metrics

    # Upstream failures -> HTTP status
    @app.exception_handler(ConfigurationError)
    async def not_configured(request: Request, exc: ConfigurationError):
        logger.error("Not configured: %s", exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(UpstreamPermanentError)
    async def upstream_rejected(request: Request, exc: UpstreamPermanentError):
        logger.error("Upstream rejected request: %s", exc)
        return JSONResponse(
            status_code=502,
            content={"detail": "Listing search failed", "upstream_status": exc.status_code},
        )

    @app.exception_handler(UpstreamTransientError)
    async def upstream_unavailable(request: Request, exc: UpstreamTransientError):
        logger.error("Upstream unavailable after %d attempt(s): %s", exc.attempts, exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Listing search temporarily unavailable"},
            headers={"Retry-After": "30"},
        )

    # Meta routes
    @app.get("/v1/health", tags=["meta"])
    def health():
        return {"status": "ok"}

    @app.get("/v1/ping", tags=["meta"])
    def ping():
        return {"pong": True}

    if settings.PROMETHEUS_ENABLED:
        # Standard Prometheus scrape endpoint
        app.add_route("/v1/metrics", metrics_endpoint, methods=["GET"])

    # Business routes
    app.include_router(comparables_router, prefix="/v1", tags=["comparables"])
    app.include_router(market_pulse_router, prefix="/v1", tags=["market-pulse"])

    return app

app = create_app()
