"""
Campaign and campaign alert models
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Boolean, JSON, Text, BigInteger, ForeignKey, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from liveperf.models.base import Base


class Platform(str, enum.Enum):
    google = "google"
    meta = "meta"
    tiktok = "tiktok"
    linkedin = "linkedin"


class CampaignStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    paused = "paused"
    completed = "completed"
    deleted = "deleted"


class Campaign(Base):
    """Advertising campaign on one platform"""
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String, nullable=False)

    platform = Column(String, index=True, nullable=False)
    platform_campaign_id = Column(String, index=True, nullable=True)  # External campaign ID
    status = Column(String, index=True, default=CampaignStatus.draft.value, nullable=False)

    daily_budget = Column(Float, default=0)
    launched_at = Column(DateTime, nullable=True)

    # Live metrics cache (raw + derived counters, camelCase keys)
    metrics = Column(JSON, nullable=True)
    metrics_sync_seq = Column(BigInteger, default=0, nullable=False)

    # Sync bookkeeping
    last_synced_at = Column(DateTime, nullable=True)
    last_sync_attempt_at = Column(DateTime, nullable=True)
    last_sync_error = Column(Text, nullable=True)

    alerts = relationship(
        "CampaignAlert",
        back_populates="campaign",
        order_by="CampaignAlert.created_at",
        cascade="all, delete-orphan",
    )

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_campaigns_user_status", "user_id", "status"),
    )


class CampaignAlert(Base):
    """Alert raised against a campaign by the alert evaluator"""
    __tablename__ = "campaign_alerts"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), index=True, nullable=False)

    type = Column(String, nullable=False)  # performance, budget
    rule = Column(String, index=True, nullable=False)
    severity = Column(String, index=True, nullable=False)  # info, warning, error, critical
    metric = Column(String, nullable=False)
    value = Column(Float, nullable=False)
    threshold = Column(Float, nullable=False)
    message = Column(Text, nullable=False)
    suggestion = Column(Text, nullable=True)

    acknowledged = Column(Boolean, default=False, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)

    campaign = relationship("Campaign", back_populates="alerts")
