"""
Health endpoint
"""

from datetime import datetime

from fastapi import APIRouter, Request

from ...core.config import get_settings
from ...schemas.sync import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def health(request: Request):
    """Liveness of the API and the sync orchestrator"""
    settings = get_settings()
    orchestrator = getattr(request.app.state, "orchestrator", None)
    running = bool(orchestrator and orchestrator.running)
    return {
        "status": "healthy" if running else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "orchestrator_running": running,
        "timestamp": datetime.utcnow(),
    }
