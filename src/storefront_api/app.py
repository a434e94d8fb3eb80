from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from storefront_api.core.settings import settings
from storefront_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import PendingPaymentSweeper


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = PendingPaymentSweeper(
        session_factory=_session_factory,
        interval_seconds=settings.payment_sweeper_interval_seconds,
        retention_seconds=settings.payment_record_retention_seconds,
    )
    app.state.payment_sweeper = sweeper

    sweeper_enabled = settings.payment_sweeper_enabled
    if sweeper_enabled:
        sweeper.start()
        logger.info(
            "Pending payment sweeper enabled",
            interval_seconds=sweeper.interval_seconds,
            ttl_seconds=settings.pending_payment_ttl_seconds,
        )
    else:
        logger.info(
            "Pending payment sweeper disabled",
            reason="payment_sweeper_enabled is false",
        )

    try:
        yield
    finally:
        if sweeper_enabled and sweeper.is_running:
            await sweeper.stop()


def create_app() -> FastAPI:
    """Application factory for the storefront settlement service."""
    configure_logging(
        service_name="storefront-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Storefront Settlement API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.otel_enabled:
        configure_tracing(
            app,
            service_name="storefront-api",
            service_version=APP_VERSION,
            environment=settings.environment,
            excluded_urls=settings.otel_excluded_urls,
        )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
