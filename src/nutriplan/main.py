"""NutriPlan - Application Entry Point.

Builds the FastAPI application: service container, middleware stack, exception
handlers and the ``/api`` routers.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nutriplan import __version__
from nutriplan.api.errors import register_exception_handlers
from nutriplan.core.config import Settings, get_settings
from nutriplan.core.container import ServiceContainer, build_container
from nutriplan.core.logging_config import setup_logging
from nutriplan.middleware.metrics import setup_metrics
from nutriplan.middleware.rate_limiting import setup_rate_limiting
from nutriplan.middleware.request_logger import RequestLoggingMiddleware
from nutriplan.middleware.security_headers import SecurityHeadersMiddleware
from nutriplan.models.common import ok

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the container on startup and release it on shutdown."""
    settings: Settings = app.state.settings
    setup_logging()
    settings.log_configuration_summary()

    container: ServiceContainer | None = getattr(app.state, "container", None)
    if container is None:
        try:
            container = build_container(settings)
        except Exception as e:
            logger.exception("Failed to initialize service container")
            msg = f"Container initialization failed: {e}"
            raise RuntimeError(msg) from e
        app.state.container = container

    if settings.enable_notification_worker:
        await container.start_workers()

    logger.info("NutriPlan backend started (%s)", settings.environment)

    yield

    logger.info("Shutting down NutriPlan backend...")
    await container.shutdown()


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure all application middleware.

    Starlette runs the last added middleware first, so CORS is added last.
    """
    config = settings.get_middleware_config()

    # Development middleware
    if config.log_requests:
        app.add_middleware(RequestLoggingMiddleware, exempt_paths=config.exempt_paths)

    # Request metrics
    if config.record_metrics:
        setup_metrics(app)

    # Rate limiting
    if config.rate_limit_enabled:
        setup_rate_limiting(app, settings, config)

    # Security headers
    app.add_middleware(
        SecurityHeadersMiddleware,
        enable_hsts=settings.is_production(),
        enable_csp=True,
        cache_control="no-store, private",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=86400,
    )


def include_routers(app: FastAPI) -> None:
    """Include all API routers."""
    from nutriplan.api.v1.router import api_router  # noqa: PLC0415

    app.include_router(api_router, prefix="/api")


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    A prebuilt ``container`` replaces the one the lifespan would build.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        description="Nutrition practice management API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if container is not None:
        app.state.container = container

    configure_middleware(app, settings)
    register_exception_handlers(app)
    include_routers(app)

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root() -> dict[str, Any]:
        return ok(
            "NutriPlan API",
            {"version": __version__, "environment": settings.environment},
        )

    # Health check
    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, Any]:
        """Store reachability and identity provider configuration."""
        current: ServiceContainer | None = getattr(app.state, "container", None)
        if current is None:
            return ok("Initializing", {"status": "initializing", "version": __version__})

        store_healthy = await current.store.health_check()
        return ok(
            "Service is healthy" if store_healthy else "Service is degraded",
            {
                "status": "healthy" if store_healthy else "degraded",
                "version": __version__,
                "store": store_healthy,
                "firebaseConfigured": current.provider_state.is_configured,
            },
        )

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logger.info("Starting NutriPlan on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)
