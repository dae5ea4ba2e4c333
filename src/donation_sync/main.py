"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events that start and drain the webhook worker pool, and the v1
API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.donation_sync.config import get_settings
from src.donation_sync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.donation_sync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.donation_sync.api.v1.router import router as v1_router
from src.donation_sync.paymentgateway.dispatcher import WebhookDispatcher
from src.donation_sync.paymentgateway.processor import StripeProcessor
from src.donation_sync.paymentgateway.workers import KeyedWorkerPool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire the processor and start workers; drain them on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    if not settings.STRIPE_WEBHOOK_SECRET:
        log.warning("startup.signature_verification_disabled")
    if not settings.CRM_SINK_URL:
        log.warning("startup.crm_sink_logging_only")

    processor = StripeProcessor.from_settings(settings)
    pool = KeyedWorkerPool(
        worker_count=settings.WORKER_COUNT,
        queue_size=settings.WORKER_QUEUE_SIZE,
    )
    await pool.start()

    app.state.processor = processor
    app.state.worker_pool = pool
    app.state.webhook_dispatcher = WebhookDispatcher(
        processor,
        pool,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
    )
    log.info(
        "startup.complete",
        workers=settings.WORKER_COUNT,
        org_currency=settings.ORG_CURRENCY,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    app.state.webhook_dispatcher = None
    await pool.stop(drain=True)
    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Donation Sync API",
        version="0.1.0",
        description="Stripe webhook to CRM donation sync",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Include v1 API router (health, webhooks)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
