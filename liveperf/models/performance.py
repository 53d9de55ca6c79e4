"""
Performance time-series model
"""
from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, BigInteger, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.sql import func

from liveperf.models.base import Base

GRANULARITIES = ("hourly", "daily", "weekly", "monthly")

# Stored in hour_slot when a snapshot has no hour (daily and coarser)
NO_HOUR = -1


class PerformanceSnapshot(Base):
    """
    One row per (campaign, date, hour, granularity).

    hour is null for daily/weekly/monthly rows; hour_slot mirrors it with -1
    for null so the unique constraint also covers those rows.
    """
    __tablename__ = "performance_snapshots"

    id = Column(Integer, primary_key=True, index=True)

    campaign_id = Column(String(36), ForeignKey("campaigns.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=True)
    platform = Column(String, index=True, nullable=True)
    platform_campaign_id = Column(String, nullable=True)

    # Period
    date = Column(Date, index=True, nullable=False)
    hour = Column(Integer, nullable=True)
    hour_slot = Column(Integer, nullable=False, default=NO_HOUR)
    granularity = Column(String, index=True, nullable=False)

    # Raw counters
    impressions = Column(Float, default=0, nullable=False)
    clicks = Column(Float, default=0, nullable=False)
    conversions = Column(Float, default=0, nullable=False)
    spend = Column(Float, default=0, nullable=False)
    revenue = Column(Float, default=0, nullable=False)

    # Derived counters
    ctr = Column(Float, default=0, nullable=False)
    cpc = Column(Float, default=0, nullable=False)
    conversion_rate = Column(Float, default=0, nullable=False)
    cost_per_conversion = Column(Float, default=0, nullable=False)
    roas = Column(Float, default=0, nullable=False)

    # Which sync attempt produced this row
    sync_seq = Column(BigInteger, default=0, nullable=False)
    synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            'campaign_id', 'date', 'hour_slot', 'granularity',
            name='uq_performance_snapshot_campaign_period'
        ),
        Index('ix_performance_snapshot_campaign_gran_date', 'campaign_id', 'granularity', 'date'),
    )
