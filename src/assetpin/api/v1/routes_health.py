"""Health check endpoint for AssetPin Engine."""

from datetime import datetime, timezone

from fastapi import APIRouter

from assetpin.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Liveness only: no storage or session checks, so it answers even while
    the object store is unreachable.

    Returns:
        dict: Health status response with status, service, version and timestamp
    """
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
