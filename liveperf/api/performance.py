"""
Live performance API
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from liveperf.errors import CampaignNotFound, LivePerformanceError
from liveperf.services.status_aggregator import CONNECTED
from liveperf.services.sync_orchestrator import SUPERSEDED
from liveperf.utils.logger import log

router = APIRouter(prefix="/performance", tags=["performance"])


def get_services(request: Request):
    """Service container built by the app lifespan"""
    return request.app.state.live_performance


def get_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """Calling user; authentication happens upstream"""
    return x_user_id


def error_response(error: LivePerformanceError) -> JSONResponse:
    return JSONResponse(
        status_code=error.http_status,
        content={"success": False, "error": error.to_dict()},
    )


@router.get("/live")
async def live_performance(user_id: str = Depends(get_user_id), services=Depends(get_services)):
    """Live dashboard data; registers the caller for background polling"""
    services.scheduler.add_active_user(user_id)
    return {"success": True, "data": services.aggregator.live_summary(user_id)}


@router.delete("/live")
async def stop_live_performance(user_id: str = Depends(get_user_id), services=Depends(get_services)):
    """Dashboard closed; stop polling for this user"""
    services.scheduler.remove_active_user(user_id)
    return {"success": True, "message": "Live updates stopped"}


@router.get("/status")
async def performance_status(user_id: str = Depends(get_user_id), services=Depends(get_services)):
    statuses = await services.aggregator.platform_statuses(user_id)
    return {
        "success": True,
        "serviceStatus": services.scheduler.get_status(),
        "platforms": {platform: status.to_dict() for platform, status in statuses.items()},
        "connectedPlatforms": [p for p, s in statuses.items() if s.status == CONNECTED],
    }


@router.post("/test-connection/{platform}")
async def test_connection(platform: str, user_id: str = Depends(get_user_id), services=Depends(get_services)):
    try:
        result = await services.aggregator.test_connection(user_id, platform)
    except LivePerformanceError as e:
        return error_response(e)

    return {"success": result.status == CONNECTED, "connectionResult": result.to_dict()}


@router.post("/force-sync/{campaign_id}")
async def force_sync(campaign_id: str, user_id: str = Depends(get_user_id), services=Depends(get_services)):
    """Sync one campaign now and return the outcome or the typed failure"""
    target = services.campaigns.get(campaign_id)
    if target is None or target.user_id != user_id:
        return error_response(CampaignNotFound(f"Campaign {campaign_id} not found", campaign_id=campaign_id))

    try:
        outcome = await services.orchestrator.force_sync(campaign_id)
    except LivePerformanceError as e:
        log.warning(f"Force sync failed for campaign {campaign_id}: [{e.error_type}] {e.message}")
        return error_response(e)

    message = "Campaign synced successfully"
    if outcome.status == SUPERSEDED:
        message = "A newer sync already updated this campaign"
    return {"success": True, "message": message, "syncResult": outcome.to_dict()}


@router.get("/trends/hourly")
async def hourly_trends(
    hours: int = Query(24, ge=1, le=168, description="Lookback window in hours"),
    user_id: str = Depends(get_user_id),
    services=Depends(get_services),
):
    trends = services.aggregator.hourly_trends(user_id, hours=hours)
    return {"success": True, "trends": trends, "dataPoints": len(trends)}


@router.get("/campaigns/{campaign_id}")
async def campaign_performance(
    campaign_id: str,
    timeframe: int = Query(30, ge=1, le=365, description="Lookback window in days"),
    granularity: str = Query("daily", pattern="^(hourly|daily|weekly|monthly)$"),
    user_id: str = Depends(get_user_id),
    services=Depends(get_services),
):
    """Stored snapshot history for one campaign"""
    try:
        history = services.aggregator.campaign_history(user_id, campaign_id, days=timeframe, granularity=granularity)
    except LivePerformanceError as e:
        return error_response(e)

    return {
        "success": True,
        "campaign": history["campaign"],
        "metrics": history["metrics"],
        "timeframe": timeframe,
        "granularity": granularity,
        "from": history["from"],
        "to": history["to"],
        "dataPoints": len(history["metrics"]),
    }


@router.get("/alerts")
async def list_alerts(
    severity: Optional[str] = Query(None, description="info, warning, error or critical"),
    acknowledged: bool = Query(False, description="Include acknowledged alerts"),
    user_id: str = Depends(get_user_id),
    services=Depends(get_services),
):
    alerts = services.alerts.list_for_user(user_id, severity=severity, include_acknowledged=acknowledged)
    return {"success": True, "alerts": alerts, "total": len(alerts)}


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(alert_id: int, user_id: str = Depends(get_user_id), services=Depends(get_services)):
    if not services.alerts.acknowledge(user_id, alert_id):
        return JSONResponse(status_code=404, content={"success": False, "message": "Alert not found"})
    return {"success": True, "message": "Alert acknowledged successfully"}
