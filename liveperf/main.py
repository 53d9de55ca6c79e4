"""
Live Performance Engine
Main FastAPI application
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from liveperf import __version__
from liveperf.api import health, performance
from liveperf.config import Settings, get_settings
from liveperf.connectors import ConnectorRegistry, default_registry
from liveperf.scheduler import LivePerformanceScheduler
from liveperf.services.repositories import AlertRepository, CampaignRepository, CredentialsRepository
from liveperf.services.snapshot_store import SnapshotStore
from liveperf.services.status_aggregator import PlatformHealthTracker, StatusAggregator
from liveperf.services.sync_orchestrator import CampaignSyncOrchestrator
from liveperf.utils.logger import log

settings = get_settings()


@dataclass
class LivePerformanceServices:
    registry: ConnectorRegistry
    campaigns: CampaignRepository
    credentials: CredentialsRepository
    alerts: AlertRepository
    health: PlatformHealthTracker
    orchestrator: CampaignSyncOrchestrator
    scheduler: LivePerformanceScheduler
    aggregator: StatusAggregator


def build_services(
    session_factory: Callable[[], Session],
    settings: Optional[Settings] = None,
    registry: Optional[ConnectorRegistry] = None,
    clock: Callable[[], datetime] = datetime.utcnow,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> LivePerformanceServices:
    """Wire repositories, orchestrator, scheduler and aggregator together"""
    settings = settings or get_settings()
    registry = registry or default_registry(settings)
    health_tracker = PlatformHealthTracker()

    campaigns = CampaignRepository(session_factory)
    credentials = CredentialsRepository(session_factory, settings)
    store = SnapshotStore()
    orchestrator = CampaignSyncOrchestrator(
        registry=registry,
        campaigns=campaigns,
        credentials=credentials,
        session_factory=session_factory,
        store=store,
        settings=settings,
        health=health_tracker,
        clock=clock,
        sleep=sleep,
    )
    scheduler = LivePerformanceScheduler(campaigns, orchestrator, settings=settings, clock=clock)
    aggregator = StatusAggregator(
        registry=registry,
        credentials=credentials,
        session_factory=session_factory,
        health=health_tracker,
        settings=settings,
        scheduler_status=scheduler.get_status,
        clock=clock,
        store=store,
    )

    return LivePerformanceServices(
        registry=registry,
        campaigns=campaigns,
        credentials=credentials,
        alerts=AlertRepository(session_factory),
        health=health_tracker,
        orchestrator=orchestrator,
        scheduler=scheduler,
        aggregator=aggregator,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    if getattr(app.state, "live_performance", None) is None:
        from liveperf.models.base import init_db, SessionLocal
        init_db()
        log.info("Database initialized")
        app.state.live_performance = build_services(SessionLocal, settings)

    services = app.state.live_performance
    if settings.start_scheduler:
        await services.scheduler.start()

    yield

    # Shutdown
    await services.scheduler.stop()
    log.info("Shutting down application")


def create_app(services: Optional[LivePerformanceServices] = None) -> FastAPI:
    """Create the FastAPI app; pass `services` to skip DB bootstrap (tests)"""
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="""
        Live performance aggregation and alerting for ad platform campaigns.

        Polls Google Ads and Meta for active campaigns, stores hourly/daily
        snapshots, derives CTR/CPC/conversion rate/cost per conversion/ROAS
        and raises threshold alerts.
        """,
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(performance.router)

    if services is not None:
        app.state.live_performance = services

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "liveperf.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
