"""
Read-only status and summary views for the dashboard
"""
import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from liveperf.config import Settings, get_settings
from liveperf.connectors.base import MetricBundle, RAW_COUNTERS
from liveperf.errors import CampaignNotFound, LivePerformanceError, MissingCredentials
from liveperf.models.campaign import Campaign, CampaignAlert, CampaignStatus
from liveperf.models.performance import PerformanceSnapshot
from liveperf.services.metric_calculator import PerformanceMetrics, aggregate, calculate_derived_metrics
from liveperf.services.snapshot_store import SnapshotStore
from liveperf.utils.logger import log

CONNECTED = "connected"
ERROR = "error"
NOT_CONFIGURED = "not_configured"

TOP_PERFORMER_ROAS = 3.0
UNDERPERFORMER_ROAS = 1.5
UNDERPERFORMER_MIN_SPEND = 50.0
PERFORMER_LIMIT = 5
RECENT_ALERT_LIMIT = 10


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class PlatformConnectionStatus:
    platform: str
    status: str
    message: str = ""
    last_error: Optional[str] = None
    last_successful_sync: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "status": self.status,
            "message": self.message,
            "lastError": self.last_error,
            "lastSuccessfulSync": _iso(self.last_successful_sync),
        }


class PlatformHealthTracker:
    """Last success / last error per platform, fed by the sync orchestrator"""

    def __init__(self):
        self._lock = threading.Lock()
        self._state: Dict[str, Dict[str, Any]] = {}

    def record_success(self, platform: str, at: datetime) -> None:
        with self._lock:
            state = self._state.setdefault(platform, {})
            state["last_successful_sync"] = at
            state["last_error"] = None

    def record_failure(self, platform: str, error: LivePerformanceError) -> None:
        with self._lock:
            state = self._state.setdefault(platform, {})
            state["last_error"] = f"{error.error_type}: {error.message}"
            state["last_error_type"] = error.error_type

    def status(self, platform: str) -> PlatformConnectionStatus:
        with self._lock:
            state = dict(self._state.get(platform, {}))

        if state.get("last_error"):
            status = NOT_CONFIGURED if state.get("last_error_type") == MissingCredentials.__name__ else ERROR
        elif state.get("last_successful_sync"):
            status = CONNECTED
        else:
            status = NOT_CONFIGURED
        return PlatformConnectionStatus(
            platform=platform,
            status=status,
            last_error=state.get("last_error"),
            last_successful_sync=state.get("last_successful_sync"),
        )


class StatusAggregator:
    """Builds connection statuses, live summaries and trend series"""

    def __init__(
        self,
        registry,
        credentials,
        session_factory: Callable[[], Session],
        health: PlatformHealthTracker,
        settings: Optional[Settings] = None,
        scheduler_status: Optional[Callable[[], Dict[str, Any]]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        store: Optional[SnapshotStore] = None,
    ):
        self.registry = registry
        self.credentials = credentials
        self.session_factory = session_factory
        self.health = health
        self.settings = settings or get_settings()
        self.scheduler_status = scheduler_status or (lambda: {"running": False})
        self.clock = clock
        self.store = store or SnapshotStore()

    # Connections

    async def test_connection(self, user_id: str, platform: str) -> PlatformConnectionStatus:
        """
        Probe one platform with the user's credentials.

        Raises:
            UnsupportedPlatform: no connector for `platform`
        """
        connector = self.registry.get(platform)
        credentials = self.credentials.for_user(user_id, platform)
        tracked = self.health.status(platform)

        try:
            await asyncio.wait_for(connector.health_check(credentials), timeout=self.settings.adapter_timeout_seconds)
        except MissingCredentials as e:
            return PlatformConnectionStatus(platform, NOT_CONFIGURED, e.message, e.message, tracked.last_successful_sync)
        except LivePerformanceError as e:
            log.warning(f"{platform} connection test failed [{e.error_type}]: {e.message}")
            return PlatformConnectionStatus(platform, ERROR, e.message, f"{e.error_type}: {e.message}",
                                            tracked.last_successful_sync)
        except asyncio.TimeoutError:
            message = f"Health check timed out after {self.settings.adapter_timeout_seconds}s"
            return PlatformConnectionStatus(platform, ERROR, message, message, tracked.last_successful_sync)

        return PlatformConnectionStatus(
            platform, CONNECTED, f"{connector.display_name or platform} connection successful",
            None, tracked.last_successful_sync,
        )

    async def platform_statuses(self, user_id: str) -> Dict[str, PlatformConnectionStatus]:
        """Probe every registered platform concurrently"""
        platforms = self.registry.platforms()
        results = await asyncio.gather(*(self.test_connection(user_id, p) for p in platforms))
        return dict(zip(platforms, results))

    # Summaries

    def _campaign_entry(self, campaign: Campaign, alerts: List[CampaignAlert], now: datetime) -> Dict[str, Any]:
        metrics = PerformanceMetrics.from_dict(campaign.metrics) if campaign.metrics else None
        stale_after = timedelta(seconds=self.settings.stale_after)
        stale = (
            campaign.last_synced_at is None
            or now - campaign.last_synced_at > stale_after
            or bool(campaign.last_sync_error)
        )
        return {
            "id": campaign.id,
            "name": campaign.name,
            "platform": campaign.platform,
            "status": campaign.status,
            "metrics": metrics.to_display() if metrics else None,
            "lastSyncedAt": _iso(campaign.last_synced_at),
            "lastSyncAttemptAt": _iso(campaign.last_sync_attempt_at),
            "lastSyncError": campaign.last_sync_error,
            "stale": stale,
            "alerts": [alert_to_dict(a, campaign) for a in alerts],
        }

    def live_summary(self, user_id: str) -> Dict[str, Any]:
        """
        Account-level view over the user's active campaigns.

        Totals and per-platform figures are summed from cached metrics and
        derived KPIs are recomputed from the sums. Platform status comes from
        the health tracker; no network calls are made here.
        """
        now = self.clock()
        db = self.session_factory()
        try:
            campaigns = db.query(Campaign).filter(
                Campaign.user_id == user_id,
                Campaign.status == CampaignStatus.active.value,
            ).order_by(Campaign.name.asc()).all()

            campaign_ids = [c.id for c in campaigns]
            alerts_by_campaign: Dict[str, List[CampaignAlert]] = {cid: [] for cid in campaign_ids}
            if campaign_ids:
                unacked = db.query(CampaignAlert).filter(
                    CampaignAlert.campaign_id.in_(campaign_ids),
                    CampaignAlert.acknowledged.is_(False),
                ).order_by(CampaignAlert.created_at.desc()).all()
                for alert in unacked:
                    alerts_by_campaign[alert.campaign_id].append(alert)

            entries = [self._campaign_entry(c, alerts_by_campaign[c.id], now) for c in campaigns]
            metrics_by_id = {
                c.id: PerformanceMetrics.from_dict(c.metrics) for c in campaigns if c.metrics
            }

            totals = aggregate(m.raw for m in metrics_by_id.values())

            platforms = {}
            for platform in sorted(set(self.registry.platforms()) | {c.platform for c in campaigns}):
                platform_metrics = [metrics_by_id[c.id].raw for c in campaigns
                                    if c.platform == platform and c.id in metrics_by_id]
                status = self.health.status(platform).to_dict()
                status["campaignCount"] = sum(1 for c in campaigns if c.platform == platform)
                status["data"] = aggregate(platform_metrics).to_display()
                platforms[platform] = status

            with_metrics = [e for e in entries if e["metrics"]]
            top = sorted(
                (e for e in with_metrics if e["metrics"]["roas"] > TOP_PERFORMER_ROAS),
                key=lambda e: e["metrics"]["roas"], reverse=True,
            )[:PERFORMER_LIMIT]
            under = sorted(
                (e for e in with_metrics
                 if e["metrics"]["roas"] < UNDERPERFORMER_ROAS and e["metrics"]["spend"] > UNDERPERFORMER_MIN_SPEND),
                key=lambda e: e["metrics"]["roas"],
            )[:PERFORMER_LIMIT]

            recent_alerts = sorted(
                (a for e in entries for a in e["alerts"]),
                key=lambda a: a["createdAt"], reverse=True,
            )[:RECENT_ALERT_LIMIT]

            synced = [c.last_synced_at for c in campaigns if c.last_synced_at]
            return {
                "totals": totals.to_display(),
                "platforms": platforms,
                "campaigns": entries,
                "topPerformingCampaigns": [_performer(e) for e in top],
                "underperformingCampaigns": [_performer(e) for e in under],
                "alerts": recent_alerts,
                "serviceStatus": self.scheduler_status(),
                "lastUpdated": _iso(max(synced) if synced else None),
                "generatedAt": now.isoformat(),
            }
        finally:
            db.close()

    def hourly_trends(self, user_id: str, hours: int = 24) -> List[Dict[str, Any]]:
        """Hourly series over the last `hours`, summed across the user's campaigns"""
        now = self.clock()
        window_start = (now - timedelta(hours=hours - 1)).replace(minute=0, second=0, microsecond=0)

        db = self.session_factory()
        try:
            rows = db.query(PerformanceSnapshot).join(
                Campaign, Campaign.id == PerformanceSnapshot.campaign_id
            ).filter(
                Campaign.user_id == user_id,
                PerformanceSnapshot.granularity == "hourly",
                PerformanceSnapshot.date >= window_start.date(),
                PerformanceSnapshot.date <= now.date(),
            ).order_by(PerformanceSnapshot.date.asc(), PerformanceSnapshot.hour_slot.asc()).all()
        finally:
            db.close()

        buckets: Dict[tuple, List[PerformanceSnapshot]] = {}
        for row in rows:
            slot = datetime.combine(row.date, datetime.min.time()).replace(hour=row.hour)
            if slot < window_start:
                continue
            buckets.setdefault((row.date, row.hour), []).append(row)

        trends = []
        for (day, hour), bucket in sorted(buckets.items()):
            metrics = aggregate(
                MetricBundle(**{name: getattr(r, name) for name in RAW_COUNTERS}) for r in bucket
            )
            point = {"date": day.isoformat(), "hour": hour, "campaigns": len(bucket)}
            point.update(metrics.to_display())
            trends.append(point)
        return trends

    def campaign_history(self, user_id: str, campaign_id: str, days: int = 30,
                         granularity: str = "daily") -> Dict[str, Any]:
        """
        One campaign's snapshots of `granularity` over the last `days` days.

        Weekly and monthly rows are dated at the start of their period, so the
        window is widened back to the start of the first period it touches.

        Raises:
            CampaignNotFound: missing, or owned by another user
            ValueError: unknown granularity
        """
        end = self.clock().date()
        start = end - timedelta(days=days - 1)
        if granularity == "weekly":
            start -= timedelta(days=start.weekday())
        elif granularity == "monthly":
            start = start.replace(day=1)
        elif granularity not in ("hourly", "daily"):
            raise ValueError(f"Unknown granularity '{granularity}'")

        db = self.session_factory()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
            if campaign is None or campaign.user_id != user_id:
                raise CampaignNotFound(f"Campaign {campaign_id} not found", campaign_id=campaign_id)

            rows = self.store.query(db, campaign_id, start, end, granularity)
            return {
                "campaign": {
                    "id": campaign.id,
                    "name": campaign.name,
                    "platform": campaign.platform,
                    "status": campaign.status,
                },
                "metrics": [_snapshot_point(row) for row in rows],
                "from": start.isoformat(),
                "to": end.isoformat(),
            }
        finally:
            db.close()


def _snapshot_point(row: PerformanceSnapshot) -> Dict[str, Any]:
    metrics = calculate_derived_metrics(MetricBundle(**{name: getattr(row, name) for name in RAW_COUNTERS}))
    point = {"date": row.date.isoformat(), "hour": row.hour, "syncedAt": _iso(row.synced_at)}
    point.update(metrics.to_display())
    return point


def _performer(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": entry["id"],
        "name": entry["name"],
        "platform": entry["platform"],
        "roas": entry["metrics"]["roas"],
        "spend": entry["metrics"]["spend"],
        "conversions": entry["metrics"]["conversions"],
    }


def alert_to_dict(alert: CampaignAlert, campaign: Optional[Campaign] = None) -> Dict[str, Any]:
    data = {
        "id": alert.id,
        "campaignId": alert.campaign_id,
        "type": alert.type,
        "rule": alert.rule,
        "severity": alert.severity,
        "metric": alert.metric,
        "value": alert.value,
        "threshold": alert.threshold,
        "message": alert.message,
        "suggestion": alert.suggestion,
        "acknowledged": alert.acknowledged,
        "createdAt": _iso(alert.created_at),
    }
    if campaign is not None:
        data["campaignName"] = campaign.name
        data["platform"] = campaign.platform
    return data
