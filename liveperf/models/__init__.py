"""Database models"""
from liveperf.models.base import Base, engine, SessionLocal, get_db, init_db
from liveperf.models.user import User
from liveperf.models.campaign import Campaign, CampaignAlert, CampaignStatus, Platform
from liveperf.models.performance import PerformanceSnapshot, GRANULARITIES, NO_HOUR

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "User",
    "Campaign",
    "CampaignAlert",
    "CampaignStatus",
    "Platform",
    "PerformanceSnapshot",
    "GRANULARITIES",
    "NO_HOUR",
]
