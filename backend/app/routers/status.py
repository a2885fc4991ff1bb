"""Service status endpoints."""
from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from app.config import settings

router = APIRouter()


@router.get("/")
async def service_status():
    """Report which integrations are configured."""
    return {
        "status": "ok",
        "storeConfigured": bool(settings.DATABASE_URL),
        "authConfigured": bool(settings.AUTH_SERVICE_URL),
        "secretConfigured": bool(settings.OPENPIX_WEBHOOK_SECRET),
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


@router.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    return "ok"


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
