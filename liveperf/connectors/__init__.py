"""Ad platform connectors"""
from typing import Dict, List, Optional

from liveperf.config import Settings, get_settings
from liveperf.connectors.base import (
    BaseConnector,
    CampaignRef,
    MetricBundle,
    PlatformCredentials,
    RAW_COUNTERS,
)
from liveperf.errors import UnsupportedPlatform


class ConnectorRegistry:
    """Platform name -> connector lookup"""

    def __init__(self, connectors: Optional[List[BaseConnector]] = None):
        self._connectors: Dict[str, BaseConnector] = {}
        for connector in connectors or []:
            self.register(connector)

    def register(self, connector: BaseConnector) -> None:
        if not connector.platform:
            raise ValueError(f"{type(connector).__name__} has no platform name")
        self._connectors[connector.platform] = connector

    def get(self, platform: str) -> BaseConnector:
        connector = self._connectors.get(platform)
        if connector is None:
            raise UnsupportedPlatform(f"No connector registered for platform '{platform}'", platform=platform)
        return connector

    def platforms(self) -> List[str]:
        return list(self._connectors)

    def __contains__(self, platform: str) -> bool:
        return platform in self._connectors


def default_registry(settings: Optional[Settings] = None) -> ConnectorRegistry:
    """Registry with the Google Ads and Meta connectors, bounded by the adapter timeout"""
    from liveperf.connectors.google_ads import GoogleAdsConnector
    from liveperf.connectors.meta_ads import MetaAdsConnector

    settings = settings or get_settings()
    timeout = settings.adapter_timeout_seconds
    return ConnectorRegistry([
        GoogleAdsConnector(timeout_seconds=timeout),
        MetaAdsConnector(timeout_seconds=timeout),
    ])


__all__ = [
    "BaseConnector",
    "CampaignRef",
    "ConnectorRegistry",
    "MetricBundle",
    "PlatformCredentials",
    "RAW_COUNTERS",
    "default_registry",
]
