"""
Health check endpoint
"""
from fastapi import APIRouter, Request
from datetime import datetime
from liveperf.config import get_settings
from liveperf import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    services = getattr(request.app.state, "live_performance", None)
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment,
        "scheduler_running": bool(services and services.scheduler.running),
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }
