"""Health check endpoints."""

from fastapi import APIRouter, Depends

from charger.api.deps import get_services
from charger.services import Services

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "charger"}


@router.get("/health/detailed")
async def detailed_health(services: Services = Depends(get_services)):
    """Detailed health check with configuration and runtime info."""
    return {
        "status": "healthy",
        "service": "charger",
        "version": "0.1.0",
        "config": services.settings.get_safe_dict(),
        "sessions": len(services.sessions),
        "withdrawals_in_flight": services.locks.in_flight(),
    }
