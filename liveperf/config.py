"""
Configuration management for the live performance engine
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Live Performance Engine"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    start_scheduler: bool = True

    # Database
    database_url: str = "sqlite:///./liveperf.db"

    # Google Ads (application-level OAuth client; customer ids live on the user)
    google_ads_developer_token: Optional[str] = None
    google_ads_client_id: Optional[str] = None
    google_ads_client_secret: Optional[str] = None
    google_ads_refresh_token: Optional[str] = None
    google_ads_login_customer_id: Optional[str] = None

    # Meta Marketing API
    meta_access_token: Optional[str] = None  # Fallback when the user has no token of their own
    meta_api_version: str = "v18.0"

    # Polling
    poll_interval_seconds: int = 300
    max_concurrent_syncs: int = 10
    stale_after_seconds: Optional[int] = None  # Defaults to 2x poll interval

    # Adapter calls
    adapter_timeout_seconds: float = 60.0
    adapter_max_attempts: int = 3
    adapter_retry_base_delay: float = 2.0
    adapter_retry_max_delay: float = 30.0

    # Time-series
    rollup_granularities: List[str] = ["weekly", "monthly"]

    # Alert thresholds
    alert_cooldown_minutes: int = 60  # 0 = re-fire every cycle
    alert_low_ctr_threshold: float = 1.0
    alert_low_ctr_min_impressions: int = 1000
    alert_high_cpc_ceiling: float = 5.0
    alert_high_cpc_min_clicks: int = 10
    alert_low_roas_threshold: float = 2.0
    alert_low_roas_min_conversions: int = 3
    alert_low_conversion_rate_threshold: float = 1.0
    alert_low_conversion_rate_min_clicks: int = 50
    alert_budget_pacing_factor: float = 1.2

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def stale_after(self) -> int:
        """Seconds after which cached metrics are shown as stale"""
        return self.stale_after_seconds or self.poll_interval_seconds * 2


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
