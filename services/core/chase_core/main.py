"""Chase Core API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from chase_core.api.routes import ops as ops_routes
from chase_core.api.routes import portal as portal_routes
from chase_core.api.routes import webhooks as webhook_routes
from chase_core.config import get_settings
from chase_core.observability.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="chase-core",
    )
    app.state.settings = settings
    yield
    # Shutdown


app = FastAPI(
    title="Chase Core API",
    description="Document chase scheduling and dispatch",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(ops_routes.router)
app.include_router(portal_routes.router)
app.include_router(webhook_routes.router)


@app.get("/healthz")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True, "service": "chase-core"}
