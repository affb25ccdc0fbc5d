"""
toolmount.api.main - FastAPI Application Factory

Creates and configures the FastAPI application for the toolmount API.

Usage:
    # Development
    uvicorn toolmount.api.main:app --reload

    # Production
    uvicorn toolmount.api.main:app --host 0.0.0.0 --port 8000

Environment Variables:
    TOOLMOUNT_CORS_ORIGINS: JSON list of allowed CORS origins
    DATABASE_URL: Database connection string
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from toolmount import __version__
from toolmount.api.v1.router import api_router
from toolmount.models.database import get_engine, get_sessionmaker
from toolmount.services.tool_runtime import ToolRuntime
from toolmount.settings import ToolmountSettings, get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Sets up the database connection pool and starts the tool runtime on
    startup; stops the runtime and closes connections on shutdown.
    A runtime placed on app.state beforehand (tests) is used as-is.
    """
    # Startup
    app.state.settings.configure_logging()
    logger.info("Starting toolmount API server...")

    engine = None
    runtime: ToolRuntime | None = getattr(app.state, "runtime", None)
    if runtime is None:
        settings: ToolmountSettings = app.state.settings
        engine = get_engine(settings.database_url)
        app.state.engine = engine
        app.state.sessionmaker = get_sessionmaker(engine)
        runtime = ToolRuntime(app.state.sessionmaker, settings=settings)
        app.state.runtime = runtime

    await runtime.start()
    logger.info(f"Tool runtime ready: {runtime!r}")

    yield

    # Shutdown
    logger.info("Shutting down toolmount API server...")
    await runtime.shutdown()
    if engine is not None:
        await engine.dispose()
        logger.info("Database connections closed")


def create_app(
    settings: ToolmountSettings | None = None,
    runtime: ToolRuntime | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to get_settings())
        runtime: Pre-built runtime (tests); built from settings otherwise

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="toolmount API",
        description="Registry and sandboxed runtime for agent-defined tools",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    if runtime is not None:
        app.state.runtime = runtime

    logger.info(f"Configuring CORS for origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


# Create the application instance
app = create_app()
