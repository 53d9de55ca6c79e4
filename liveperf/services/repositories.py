"""
Access to campaigns, per-user platform credentials and alerts
"""
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from sqlalchemy.orm import Session

from liveperf.config import Settings, get_settings
from liveperf.connectors.base import PlatformCredentials
from liveperf.models.campaign import Campaign, CampaignAlert, CampaignStatus, Platform
from liveperf.models.user import User
from liveperf.services.status_aggregator import alert_to_dict


@dataclass(frozen=True)
class CampaignTarget:
    """Detached view of a campaign, safe to pass between tasks"""
    campaign_id: str
    user_id: str
    name: str
    platform: str
    platform_campaign_id: Optional[str] = None
    daily_budget: float = 0.0

    @classmethod
    def from_model(cls, campaign: Campaign) -> "CampaignTarget":
        return cls(
            campaign_id=campaign.id,
            user_id=campaign.user_id,
            name=campaign.name,
            platform=campaign.platform,
            platform_campaign_id=campaign.platform_campaign_id,
            daily_budget=campaign.daily_budget or 0.0,
        )


class CampaignRepository:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def find_active_for_users(self, user_ids: Iterable[str]) -> List[CampaignTarget]:
        """Active campaigns owned by any of `user_ids`"""
        user_ids = list(user_ids)
        if not user_ids:
            return []

        db = self.session_factory()
        try:
            campaigns = db.query(Campaign).filter(
                Campaign.user_id.in_(user_ids),
                Campaign.status == CampaignStatus.active.value,
            ).order_by(Campaign.created_at.asc()).all()
            return [CampaignTarget.from_model(c) for c in campaigns]
        finally:
            db.close()

    def get(self, campaign_id: str) -> Optional[CampaignTarget]:
        db = self.session_factory()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
            return CampaignTarget.from_model(campaign) if campaign else None
        finally:
            db.close()


class CredentialsRepository:
    """
    Builds PlatformCredentials for a user.

    The OAuth client (developer token, client id/secret, refresh token) is
    application-level config; account identifiers come from the user row.
    """

    def __init__(self, session_factory: Callable[[], Session], settings: Optional[Settings] = None):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def _load_user(self, user_id: str) -> Optional[User]:
        db = self.session_factory()
        try:
            return db.query(User).filter(User.id == user_id).first()
        finally:
            db.close()

    def for_user(self, user_id: str, platform: str) -> Optional[PlatformCredentials]:
        """Credentials for `platform`, or None when the user doesn't exist"""
        user = self._load_user(user_id)
        if user is None:
            return None

        s = self.settings
        if platform == Platform.google.value:
            return PlatformCredentials(platform, {
                "developer_token": s.google_ads_developer_token,
                "client_id": s.google_ads_client_id,
                "client_secret": s.google_ads_client_secret,
                "refresh_token": s.google_ads_refresh_token,
                "customer_id": user.google_ads_customer_id,
                "login_customer_id": user.google_ads_login_customer_id or s.google_ads_login_customer_id,
            })

        if platform == Platform.meta.value:
            return PlatformCredentials(platform, {
                "access_token": user.meta_access_token or s.meta_access_token,
                "ad_account_id": user.meta_ad_account_id,
            })

        # No credential mapping for this platform
        return PlatformCredentials(platform, {})


class AlertRepository:
    """Listing and acknowledgement of campaign alerts"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def list_for_user(self, user_id: str, severity: Optional[str] = None,
                      include_acknowledged: bool = False, limit: int = 100) -> List[dict]:
        """Alerts across the user's campaigns, newest first"""
        db = self.session_factory()
        try:
            q = db.query(CampaignAlert, Campaign).join(
                Campaign, Campaign.id == CampaignAlert.campaign_id
            ).filter(Campaign.user_id == user_id)

            if not include_acknowledged:
                q = q.filter(CampaignAlert.acknowledged.is_(False))
            if severity:
                q = q.filter(CampaignAlert.severity == severity)

            rows = q.order_by(CampaignAlert.created_at.desc(), CampaignAlert.id.desc()).limit(limit).all()
            return [alert_to_dict(alert, campaign) for alert, campaign in rows]
        finally:
            db.close()

    def acknowledge(self, user_id: str, alert_id: int) -> bool:
        """Mark an alert acknowledged; False when the user owns no such alert"""
        db = self.session_factory()
        try:
            alert = db.query(CampaignAlert).join(
                Campaign, Campaign.id == CampaignAlert.campaign_id
            ).filter(
                CampaignAlert.id == alert_id,
                Campaign.user_id == user_id,
            ).first()
            if alert is None:
                return False

            alert.acknowledged = True
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
