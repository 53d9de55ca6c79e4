"""
Base connector class for ad platform adapters
"""
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, Mapping, Optional, Tuple

from liveperf.errors import AdapterError, LivePerformanceError, MissingCredentials, TransientError
from liveperf.utils.logger import log
from liveperf.utils.retry import is_retryable_error

RAW_COUNTERS = ("impressions", "clicks", "conversions", "spend", "revenue")


@dataclass(frozen=True)
class MetricBundle:
    """Raw counters reported by a platform for one campaign and period"""
    impressions: float = 0
    clicks: float = 0
    conversions: float = 0
    spend: float = 0.0
    revenue: float = 0.0

    @classmethod
    def from_counts(cls, **counts) -> "MetricBundle":
        """
        Build a bundle from loosely typed platform values.

        Missing or None counters become 0. Negative, non-numeric or
        non-finite values raise ValueError.
        """
        values = {}
        for name in RAW_COUNTERS:
            raw = counts.get(name)
            if raw is None or raw == "":
                values[name] = 0
                continue
            if isinstance(raw, bool):
                raise ValueError(f"{name} must be numeric, got {raw!r}")
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise ValueError(f"{name} must be numeric, got {raw!r}")
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be a non-negative number, got {raw!r}")
            values[name] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class CampaignRef:
    """Which campaign (or account, when platform_campaign_id is None) to report on"""
    platform: str
    campaign_id: Optional[str] = None
    platform_campaign_id: Optional[str] = None
    report_date: Optional[date] = None


@dataclass
class PlatformCredentials:
    """Per-user credentials for a single platform"""
    platform: str
    values: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def missing(self, required: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(key for key in required if not self.values.get(key))

    def __contains__(self, key: str) -> bool:
        return bool(self.values.get(key))


class BaseConnector(ABC):
    """
    Base class for platform adapters.

    Subclasses declare `platform` and `required_credentials` and implement
    `_fetch_raw` and `_probe`. `fetch` and `health_check` own the credential
    check and error classification so every adapter fails the same way.
    """

    platform: str = ""
    display_name: str = ""
    required_credentials: Tuple[str, ...] = ()

    def check_credentials(self, credentials: Optional[PlatformCredentials]) -> PlatformCredentials:
        """Raise MissingCredentials unless every required field is present"""
        if credentials is None:
            raise MissingCredentials(
                f"No {self.display_name or self.platform} credentials configured",
                platform=self.platform,
            )
        missing = credentials.missing(self.required_credentials)
        if missing:
            raise MissingCredentials(
                f"{self.display_name or self.platform} credentials incomplete: missing {', '.join(missing)}",
                platform=self.platform,
            )
        return credentials

    async def fetch(self, ref: CampaignRef, credentials: Optional[PlatformCredentials]) -> MetricBundle:
        """
        Fetch raw metrics for a campaign.

        Raises:
            MissingCredentials: before any network I/O
            AuthError / TransientError / AdapterError: on platform failure
        """
        credentials = self.check_credentials(credentials)

        try:
            counts = await self._fetch_raw(ref, credentials)
        except LivePerformanceError as e:
            if e.platform is None:
                e.platform = self.platform
            if e.campaign_id is None:
                e.campaign_id = ref.campaign_id
            raise
        except Exception as e:
            raise self._classify(e, ref.campaign_id) from e

        try:
            return MetricBundle.from_counts(**counts)
        except ValueError as e:
            raise AdapterError(
                f"{self.platform} returned invalid metrics: {e}",
                platform=self.platform,
                campaign_id=ref.campaign_id,
            ) from e

    async def health_check(self, credentials: Optional[PlatformCredentials]) -> bool:
        """Lightweight connectivity probe; raises the same typed errors as fetch"""
        credentials = self.check_credentials(credentials)
        try:
            return await self._probe(credentials)
        except LivePerformanceError as e:
            if e.platform is None:
                e.platform = self.platform
            raise
        except Exception as e:
            raise self._classify(e) from e

    def _classify(self, error: Exception, campaign_id: Optional[str] = None) -> AdapterError:
        """Map an unexpected SDK/HTTP error onto the adapter taxonomy"""
        message = f"{type(error).__name__}: {error}"
        if is_retryable_error(error):
            log.warning(f"{self.platform} transient error: {message}")
            return TransientError(message, platform=self.platform, campaign_id=campaign_id)
        log.error(f"{self.platform} adapter error: {message}")
        return AdapterError(message, platform=self.platform, campaign_id=campaign_id)

    @abstractmethod
    async def _fetch_raw(self, ref: CampaignRef, credentials: PlatformCredentials) -> Mapping[str, Any]:
        """Return raw counter values keyed by impressions/clicks/conversions/spend/revenue"""
        pass

    @abstractmethod
    async def _probe(self, credentials: PlatformCredentials) -> bool:
        """Cheapest authenticated call the platform offers"""
        pass

    def get_status(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "name": self.display_name or self.platform,
            "required_credentials": list(self.required_credentials),
        }
