"""
User model (owner of campaigns and per-platform account credentials)
"""
import uuid

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func

from liveperf.models.base import Base


class User(Base):
    """Dashboard user and their ad platform account identifiers"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    email = Column(String, unique=True, index=True)
    name = Column(String, nullable=True)

    # Google Ads
    google_ads_customer_id = Column(String, nullable=True)
    google_ads_login_customer_id = Column(String, nullable=True)

    # Meta
    meta_ad_account_id = Column(String, nullable=True)
    meta_access_token = Column(String, nullable=True)

    # Settings
    performance_alerts = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
