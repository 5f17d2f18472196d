"""Provider health endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import get_provider_registry
from app.core.config import get_settings
from app.core.providers import ProviderHealthRegistry, get_provider_status

router = APIRouter()


@router.get("/health")
async def provider_health(
    registry: ProviderHealthRegistry = Depends(get_provider_registry),  # noqa: B008
) -> JSONResponse:
    """
    Report AI provider availability.

    Returns 200 while at least one provider can take traffic, else 503.
    """
    providers = get_provider_status(registry)
    healthy_count = sum(1 for p in providers if p["isAvailable"])
    healthy = healthy_count > 0

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "uptime": f"{healthy_count}/{len(providers)}",
            "providers": providers,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": get_settings().DISCOVERY_ENV,
        },
    )
