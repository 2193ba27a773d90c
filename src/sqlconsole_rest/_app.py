"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from ._config import Settings
from ._connections import EngineFactory
from ._errors import register_error_handlers
from ._executor import QueryExecutor
from ._logging import RequestLoggingMiddleware, configure_logging, get_logger
from ._middleware import BodySizeLimitMiddleware, SecurityHeadersMiddleware
from ._routes import _execute, _health, _info


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    get_logger("sqlconsole_rest.startup").info(
        "service_starting",
        environment=settings.app_env,
        account_configured=bool(settings.snowflake_account),
        host_configured=bool(settings.snowflake_host),
        password_configured=bool(settings.snowflake_password),
        private_key_configured=bool(settings.snowflake_private_key),
    )
    yield


def create_app(
    settings: Settings | None = None,
    engine_factory: EngineFactory | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()
    configure_logging(settings.log_level, json=settings.log_json)

    app = FastAPI(
        title="SQL Console API",
        description="Run SQL against Snowflake with owner's or caller's rights",
        lifespan=lifespan,
    )
    app.state.settings = settings

    executor = QueryExecutor(
        settings,
        engine_factory=engine_factory,
        logger=logger or get_logger("sqlconsole_rest.executor"),
    )

    # Set up dependency overrides
    app.dependency_overrides[_execute.get_executor] = lambda: executor
    app.dependency_overrides[_execute.get_settings] = lambda: settings

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS (consumer configurable)
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    # Register routes
    prefix = settings.api_prefix.rstrip("/")
    app.include_router(_health.router, prefix=prefix)
    app.include_router(_execute.router, prefix=prefix)
    app.include_router(_info.router, prefix=prefix)

    return app
