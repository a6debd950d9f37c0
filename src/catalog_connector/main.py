"""FastAPI application entry point."""

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from catalog_connector.api.home import router as home_router
from catalog_connector.api.v1.router import api_router
from catalog_connector.bootstrap import connector_runtime
from catalog_connector.config import get_settings

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(get_settings().log_level),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting Catalog Connector",
        app_env=settings.app_env,
        debug=settings.debug,
    )
    logger.info(
        "Install the app by visiting the auth endpoint",
        url=f"{settings.public_base_url}/api/v1/auth?shop=your-shop-name.myshopify.com",
    )

    async with connector_runtime(settings) as services:
        app.state.services = services
        if settings.scheduler_enabled:
            services.scheduler.start()

        yield

        await services.scheduler.stop()

    logger.info("Shutting down Catalog Connector")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Catalog Connector API",
        description="Installs storefronts via OAuth, mirrors their catalogs and serves tenant-scoped search",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.include_router(home_router)
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "catalog_connector.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()
