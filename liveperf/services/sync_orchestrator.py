"""
Campaign sync orchestration

One attempt per campaign: fetch from the platform connector, derive KPIs,
write snapshots, evaluate alerts and refresh the cached metrics. Everything
after the fetch is a single synchronous DB transaction.
"""
import asyncio
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from liveperf.config import Settings, get_settings
from liveperf.connectors import ConnectorRegistry
from liveperf.connectors.base import CampaignRef
from liveperf.errors import (
    AdapterError, CampaignNotFound, EvaluationSkipped, LivePerformanceError, TransientError
)
from liveperf.models.campaign import Campaign, CampaignAlert
from liveperf.models.user import User
from liveperf.services.alert_evaluator import AlertContext, AlertThresholds, evaluate
from liveperf.services.metric_calculator import PerformanceMetrics, calculate_derived_metrics
from liveperf.services.repositories import CampaignRepository, CampaignTarget, CredentialsRepository
from liveperf.services.snapshot_store import SnapshotKey, SnapshotStore
from liveperf.services.status_aggregator import PlatformHealthTracker
from liveperf.utils.logger import log
from liveperf.utils.retry import RetryStats, retry_transient

SUCCESS = "success"
FAILED = "failed"
SUPERSEDED = "superseded"


@dataclass
class SyncOutcome:
    """Result of one sync attempt for one campaign"""
    campaign_id: str
    platform: str
    status: str
    sync_seq: int
    started_at: datetime
    metrics: Optional[PerformanceMetrics] = None
    alerts: List[Dict[str, Any]] = field(default_factory=list)
    snapshots: Dict[str, str] = field(default_factory=dict)
    evaluation: str = "skipped"
    skipped: Optional[EvaluationSkipped] = None
    error: Optional[LivePerformanceError] = None
    retry_stats: Optional[RetryStats] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaignId": self.campaign_id,
            "platform": self.platform,
            "status": self.status,
            "syncSeq": self.sync_seq,
            "startedAt": self.started_at.isoformat(),
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "alerts": self.alerts,
            "snapshots": self.snapshots,
            "evaluation": self.evaluation,
            "evaluationSkipped": self.skipped.to_dict() if self.skipped else None,
            "error": self.error.to_dict() if self.error else None,
            "retryStats": self.retry_stats.to_dict() if self.retry_stats else None,
            "durationSeconds": round(self.duration_seconds, 3),
        }


class CampaignSyncOrchestrator:
    """Runs sync attempts; `sync_campaign` never raises"""

    def __init__(
        self,
        registry: ConnectorRegistry,
        campaigns: CampaignRepository,
        credentials: CredentialsRepository,
        session_factory: Callable[[], Session],
        store: Optional[SnapshotStore] = None,
        settings: Optional[Settings] = None,
        health: Optional[PlatformHealthTracker] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.campaigns = campaigns
        self.credentials = credentials
        self.session_factory = session_factory
        self.store = store or SnapshotStore()
        self.settings = settings or get_settings()
        self.health = health or PlatformHealthTracker()
        self.clock = clock
        self.sleep = sleep
        self.thresholds = AlertThresholds.from_settings(self.settings)

        self._seq_lock = threading.Lock()
        self._last_seq = 0

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.settings.alert_cooldown_minutes)

    def next_sequence(self) -> int:
        """Strictly increasing, wall-clock based so it survives restarts"""
        with self._seq_lock:
            self._last_seq = max(self._last_seq + 1, time.time_ns())
            return self._last_seq

    async def sync_campaign(self, target: CampaignTarget) -> SyncOutcome:
        seq = self.next_sequence()
        started_at = self.clock()
        start = time.monotonic()
        stats = RetryStats()
        outcome = SyncOutcome(
            campaign_id=target.campaign_id,
            platform=target.platform,
            status=FAILED,
            sync_seq=seq,
            started_at=started_at,
            retry_stats=stats,
        )

        try:
            metrics = await self._fetch(target, started_at, stats)
            self._persist(target, seq, metrics, started_at, outcome)
        except LivePerformanceError as e:
            self._fail(target, e, started_at, outcome)
        except Exception as e:
            log.exception(f"Unexpected error syncing campaign {target.campaign_id}")
            error = AdapterError(f"{type(e).__name__}: {e}", platform=target.platform, campaign_id=target.campaign_id)
            self._fail(target, error, started_at, outcome)

        outcome.duration_seconds = time.monotonic() - start
        return outcome

    async def force_sync(self, campaign_id: str) -> SyncOutcome:
        """
        Out-of-band sync for one campaign.

        Raises:
            CampaignNotFound: unknown campaign id
            LivePerformanceError: the attempt failed (typed)
        """
        target = self.campaigns.get(campaign_id)
        if target is None:
            raise CampaignNotFound(f"Campaign {campaign_id} not found", campaign_id=campaign_id)

        log.info(f"Force sync requested for campaign {campaign_id}")
        outcome = await self.sync_campaign(target)
        if outcome.status == FAILED and outcome.error is not None:
            raise outcome.error
        return outcome

    async def _fetch(self, target: CampaignTarget, started_at: datetime, stats: RetryStats) -> PerformanceMetrics:
        connector = self.registry.get(target.platform)
        credentials = self.credentials.for_user(target.user_id, target.platform)
        ref = CampaignRef(
            platform=target.platform,
            campaign_id=target.campaign_id,
            platform_campaign_id=target.platform_campaign_id,
            report_date=started_at.date(),
        )
        timeout = self.settings.adapter_timeout_seconds

        async def attempt():
            try:
                return await asyncio.wait_for(connector.fetch(ref, credentials), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise TransientError(
                    f"{target.platform} fetch timed out after {timeout}s",
                    platform=target.platform,
                    campaign_id=target.campaign_id,
                ) from e

        bundle = await retry_transient(
            attempt,
            operation_name=f"{target.platform} fetch for campaign {target.campaign_id}",
            max_attempts=self.settings.adapter_max_attempts,
            base_delay=self.settings.adapter_retry_base_delay,
            max_delay=self.settings.adapter_retry_max_delay,
            stats=stats,
            sleep=self.sleep,
        )
        return calculate_derived_metrics(bundle)

    def _persist(self, target: CampaignTarget, seq: int, metrics: PerformanceMetrics,
                 started_at: datetime, outcome: SyncOutcome) -> None:
        """Snapshots, alerts and cache update in one transaction (no awaits)"""
        db = self.session_factory()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == target.campaign_id).first()
            if campaign is None:
                raise CampaignNotFound(f"Campaign {target.campaign_id} not found", campaign_id=target.campaign_id)

            if (campaign.metrics_sync_seq or 0) > seq:
                log.info(
                    f"Discarding superseded sync for campaign {campaign.id} "
                    f"(seq {seq} < cached {campaign.metrics_sync_seq})"
                )
                outcome.status = SUPERSEDED
                outcome.metrics = metrics
                return

            synced_at = self.clock()
            attrs = {
                "user_id": campaign.user_id,
                "platform": campaign.platform,
                "platform_campaign_id": campaign.platform_campaign_id,
            }
            day = started_at.date()

            outcome.snapshots["hourly"] = self.store.upsert(
                db, SnapshotKey(campaign.id, day, "hourly", started_at.hour), metrics, seq, synced_at, **attrs
            )
            outcome.snapshots["daily"] = self.store.upsert(
                db, SnapshotKey(campaign.id, day, "daily"), metrics, seq, synced_at, **attrs
            )
            for granularity in self.settings.rollup_granularities:
                outcome.snapshots[granularity] = self.store.rollup(
                    db, campaign.id, day, granularity, seq, synced_at, **attrs
                )

            user = db.query(User).filter(User.id == campaign.user_id).first()
            if user is not None and user.performance_alerts:
                outcome.alerts = self._evaluate_alerts(db, campaign, metrics, synced_at)
                outcome.evaluation = "evaluated"
            else:
                outcome.evaluation = "disabled"

            campaign.metrics = metrics.to_dict()
            campaign.metrics_sync_seq = seq
            campaign.last_synced_at = synced_at
            campaign.last_sync_attempt_at = started_at
            campaign.last_sync_error = None

            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        outcome.status = SUCCESS
        outcome.metrics = metrics
        self.health.record_success(target.platform, synced_at)

        log.info(
            f"Synced campaign {target.campaign_id} ({target.platform}): "
            f"{int(metrics.impressions)} impressions, {int(metrics.clicks)} clicks, "
            f"${metrics.spend:.2f} spend, {len(outcome.alerts)} alerts"
        )

    def _evaluate_alerts(self, db: Session, campaign: Campaign, metrics: PerformanceMetrics,
                         now: datetime) -> List[Dict[str, Any]]:
        prior = []
        if self.cooldown > timedelta(0):
            prior = db.query(CampaignAlert).filter(
                CampaignAlert.campaign_id == campaign.id,
                CampaignAlert.created_at >= now - self.cooldown,
            ).all()

        context = AlertContext(
            campaign_id=campaign.id,
            name=campaign.name,
            daily_budget=campaign.daily_budget or 0.0,
        )
        events = evaluate(context, metrics, prior, now=now, cooldown=self.cooldown, thresholds=self.thresholds)

        for event in events:
            db.add(CampaignAlert(
                campaign_id=campaign.id,
                type=event.type,
                rule=event.rule,
                severity=event.severity,
                metric=event.metric,
                value=event.value,
                threshold=event.threshold,
                message=event.message,
                suggestion=event.suggestion,
                created_at=event.created_at,
            ))

        if events:
            log.warning(f"Added {len(events)} alerts for campaign {campaign.name}: {[e.rule for e in events]}")
        return [event.to_dict() for event in events]

    def _fail(self, target: CampaignTarget, error: LivePerformanceError, started_at: datetime,
              outcome: SyncOutcome) -> None:
        """Record a failed attempt; cached metrics and snapshots stay as they were"""
        if error.campaign_id is None:
            error.campaign_id = target.campaign_id
        if error.platform is None:
            error.platform = target.platform

        outcome.status = FAILED
        outcome.error = error
        outcome.evaluation = "skipped"
        outcome.skipped = EvaluationSkipped(
            f"Alerts not evaluated: {error.error_type}",
            platform=target.platform,
            campaign_id=target.campaign_id,
        )
        log.error(f"Sync failed for campaign {target.campaign_id} ({target.platform}) [{error.error_type}]: {error.message}")

        if isinstance(error, AdapterError):
            self.health.record_failure(target.platform, error)

        db = self.session_factory()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == target.campaign_id).first()
            if campaign is not None:
                campaign.last_sync_error = f"{error.error_type}: {error.message}"
                campaign.last_sync_attempt_at = started_at
                db.commit()
        except Exception as e:
            db.rollback()
            log.error(f"Could not record sync failure for campaign {target.campaign_id}: {e}")
        finally:
            db.close()
