"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.providers import ProviderHealthMonitor, ProviderHealthRegistry, default_health_checks

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the provider registry and, in production, its health monitor."""
    settings = get_settings()
    app.state.provider_registry = ProviderHealthRegistry.from_settings(settings)

    monitor = None
    if settings.health_monitor_enabled:
        monitor = ProviderHealthMonitor(
            app.state.provider_registry,
            default_health_checks(settings),
            settings.PROVIDER_HEALTH_INTERVAL_SECONDS,
        )
        monitor.start()

    logger.info(f"AI Discovery Engine started (env={settings.DISCOVERY_ENV})")
    yield

    if monitor is not None:
        await monitor.stop()
    logger.info("AI Discovery Engine stopped")


app = FastAPI(
    title="AI Discovery Engine",
    description="Guided business discovery chat that ends in an AI business plan",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


app.include_router(api_router, prefix="/api")
