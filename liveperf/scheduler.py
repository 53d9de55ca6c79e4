"""
Scheduler for live performance polling

Uses APScheduler to run a sync pass over every active campaign of the users
currently watching the dashboard. Constructed and started explicitly (see
the app lifespan in liveperf.main); nothing runs on import.
"""
import asyncio
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from liveperf.config import Settings, get_settings
from liveperf.services.repositories import CampaignRepository
from liveperf.services.sync_orchestrator import CampaignSyncOrchestrator, FAILED, SUCCESS, SUPERSEDED
from liveperf.utils.logger import log

JOB_ID = "live_performance_sync"


class LivePerformanceScheduler:
    """Periodic sync passes with bounded per-campaign concurrency"""

    def __init__(
        self,
        campaigns: CampaignRepository,
        orchestrator: CampaignSyncOrchestrator,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        scheduler_factory: Callable[[], AsyncIOScheduler] = AsyncIOScheduler,
    ):
        self.campaigns = campaigns
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self.clock = clock
        self.scheduler_factory = scheduler_factory

        self.interval_seconds = self.settings.poll_interval_seconds
        self.max_concurrent = max(1, self.settings.max_concurrent_syncs)

        self._lock = threading.Lock()
        self._active_users: Set[str] = set()
        self._running = False
        self._started_at: Optional[datetime] = None
        self._last_sync_time: Optional[datetime] = None
        self._last_pass: Optional[Dict[str, Any]] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    # Lifecycle

    async def start(self) -> bool:
        """Run one pass now and then every interval. Returns False if already running."""
        with self._lock:
            if self._running:
                log.info("Live performance scheduler already running")
                return False
            self._running = True
            self._started_at = self.clock()

        self._spawn_pass()

        scheduler = self.scheduler_factory()
        scheduler.add_job(
            self._scheduled_pass,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Live performance sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()

        with self._lock:
            self._scheduler = scheduler

        log.info(f"Live performance scheduler started (every {self.interval_seconds}s)")
        return True

    async def stop(self) -> bool:
        """Cancel the timer and wait for in-flight passes. Returns False if not running."""
        with self._lock:
            if not self._running:
                return False
            self._running = False
            scheduler, self._scheduler = self._scheduler, None

        if scheduler is not None:
            if scheduler.get_job(JOB_ID):
                scheduler.remove_job(JOB_ID)
            scheduler.shutdown(wait=False)

        pending = list(self._tasks)
        if pending:
            log.info(f"Waiting for {len(pending)} in-flight sync pass(es)")
            await asyncio.gather(*pending, return_exceptions=True)

        log.info("Live performance scheduler stopped")
        return True

    def _spawn_pass(self) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.run_pass())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _scheduled_pass(self):
        await self._spawn_pass()

    # Active users

    def add_active_user(self, user_id: str) -> None:
        with self._lock:
            self._active_users.add(user_id)
            count = len(self._active_users)
        log.debug(f"Added active user {user_id} ({count} active)")

    def remove_active_user(self, user_id: str) -> None:
        with self._lock:
            self._active_users.discard(user_id)
            count = len(self._active_users)
        log.debug(f"Removed active user {user_id} ({count} active)")

    def active_users(self) -> Set[str]:
        with self._lock:
            return set(self._active_users)

    # Passes

    async def run_pass(self) -> Optional[Dict[str, Any]]:
        """
        Sync every active campaign of every active user.

        Per-campaign failures are isolated by the orchestrator; the pass
        always waits for every campaign before logging its summary.
        """
        users = self.active_users()
        if not users:
            log.debug("No active users, skipping live performance pass")
            return None

        started_at = self.clock()
        start = time.monotonic()
        targets = self.campaigns.find_active_for_users(users)
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run_one(target):
            async with semaphore:
                return await self.orchestrator.sync_campaign(target)

        outcomes = await asyncio.gather(*(run_one(t) for t in targets))

        summary = {
            "startedAt": started_at.isoformat(),
            "users": len(users),
            "campaigns": len(targets),
            "succeeded": sum(1 for o in outcomes if o.status == SUCCESS),
            "failed": sum(1 for o in outcomes if o.status == FAILED),
            "superseded": sum(1 for o in outcomes if o.status == SUPERSEDED),
            "durationSeconds": round(time.monotonic() - start, 3),
        }
        with self._lock:
            self._last_sync_time = self.clock()
            self._last_pass = summary

        log.info(
            f"Live performance pass: {summary['succeeded']} succeeded, {summary['failed']} failed, "
            f"{summary['superseded']} superseded across {summary['campaigns']} campaigns "
            f"in {summary['durationSeconds']:.1f}s"
        )
        return summary

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            running = self._running
            started_at = self._started_at
            last_sync = self._last_sync_time
            status = {
                "isRunning": running,
                "activeUsers": len(self._active_users),
                "syncInterval": self.interval_seconds,
                "maxConcurrentSyncs": self.max_concurrent,
                "lastSyncTime": last_sync.isoformat() if last_sync else None,
                "lastPass": dict(self._last_pass) if self._last_pass else None,
            }
            scheduler = self._scheduler

        status["uptime"] = (self.clock() - started_at).total_seconds() if running and started_at else 0

        job = scheduler.get_job(JOB_ID) if scheduler is not None else None
        next_run = getattr(job, "next_run_time", None) if job else None
        status["nextRunTime"] = next_run.isoformat() if next_run else None
        return status
