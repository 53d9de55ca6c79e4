"""
Google Ads connector
Fetches campaign (or account) metrics for a single reporting date via GAQL
"""
import asyncio
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional

from google.ads.googleads.client import GoogleAdsClient
from google.ads.googleads.errors import GoogleAdsException
from google.api_core.exceptions import DeadlineExceeded

from liveperf.config import get_settings
from liveperf.connectors.base import BaseConnector, CampaignRef, PlatformCredentials
from liveperf.errors import AdapterError, AuthError, TransientError
from liveperf.utils.logger import log

settings = get_settings()

AUTH_ERROR_CODES = ("authentication_error", "authorization_error")
TRANSIENT_ERROR_CODES = ("quota_error", "internal_error", "resource_exhausted")


def _clean_customer_id(value: Optional[str]) -> Optional[str]:
    return value.replace("-", "") if value else value


def build_client(credentials: PlatformCredentials) -> GoogleAdsClient:
    """Create a GoogleAdsClient from merged application + user credentials"""
    config = {
        "developer_token": credentials.get("developer_token"),
        "client_id": credentials.get("client_id"),
        "client_secret": credentials.get("client_secret"),
        "refresh_token": credentials.get("refresh_token"),
        "use_proto_plus": True,
    }
    if credentials.get("login_customer_id"):
        config["login_customer_id"] = _clean_customer_id(credentials.get("login_customer_id"))

    return GoogleAdsClient.load_from_dict(config)


class GoogleAdsConnector(BaseConnector):
    """Connector for the Google Ads platform"""

    platform = "google"
    display_name = "Google Ads"
    required_credentials = ("developer_token", "client_id", "client_secret", "refresh_token", "customer_id")

    def __init__(self, client_factory: Callable[[PlatformCredentials], Any] = build_client,
                 timeout_seconds: Optional[float] = None):
        self.client_factory = client_factory
        # gRPC deadline, so a hung call also ends inside its worker thread
        self.timeout_seconds = timeout_seconds or settings.adapter_timeout_seconds

    def _format_date(self, value: date) -> str:
        """Format date to Google Ads date string"""
        return value.strftime("%Y-%m-%d")

    def build_query(self, ref: CampaignRef) -> str:
        report_date = self._format_date(ref.report_date or date.today())
        metrics = """
                metrics.impressions,
                metrics.clicks,
                metrics.conversions,
                metrics.cost_micros,
                metrics.conversions_value"""

        if ref.platform_campaign_id:
            campaign_id = str(ref.platform_campaign_id)
            if not campaign_id.isdigit():
                raise AdapterError(
                    f"Invalid Google Ads campaign id '{campaign_id}'",
                    platform=self.platform,
                    campaign_id=ref.campaign_id,
                )
            return f"""
            SELECT
                campaign.id,{metrics}
            FROM campaign
            WHERE campaign.id = {campaign_id}
                AND segments.date = '{report_date}'
            """

        # Account-level totals
        return f"""
            SELECT
                customer.id,{metrics}
            FROM customer
            WHERE segments.date = '{report_date}'
            """

    def _search(self, credentials: PlatformCredentials, query: str) -> Dict[str, float]:
        """Blocking SDK call; sums every returned row"""
        client = self.client_factory(credentials)
        ga_service = client.get_service("GoogleAdsService")
        response = ga_service.search(
            customer_id=_clean_customer_id(credentials.get("customer_id")),
            query=query,
            timeout=self.timeout_seconds,
        )

        totals = {"impressions": 0, "clicks": 0, "conversions": 0.0, "spend": 0.0, "revenue": 0.0}
        for row in response:
            totals["impressions"] += row.metrics.impressions or 0
            totals["clicks"] += row.metrics.clicks or 0
            totals["conversions"] += row.metrics.conversions or 0
            totals["spend"] += (row.metrics.cost_micros or 0) / 1_000_000
            totals["revenue"] += row.metrics.conversions_value or 0
        return totals

    async def _fetch_raw(self, ref: CampaignRef, credentials: PlatformCredentials) -> Mapping[str, Any]:
        query = self.build_query(ref)
        try:
            totals = await asyncio.to_thread(self._search, credentials, query)
        except GoogleAdsException as e:
            raise self._classify_google_error(e, ref.campaign_id) from e
        except DeadlineExceeded as e:
            raise self._deadline_error(ref.campaign_id) from e

        log.debug(f"Google Ads metrics for {ref.platform_campaign_id or 'account'}: {totals}")
        return totals

    async def _probe(self, credentials: PlatformCredentials) -> bool:
        query = """
            SELECT customer.id
            FROM customer
            LIMIT 1
        """

        def run():
            client = self.client_factory(credentials)
            ga_service = client.get_service("GoogleAdsService")
            list(ga_service.search(
                customer_id=_clean_customer_id(credentials.get("customer_id")),
                query=query,
                timeout=self.timeout_seconds,
            ))
            return True

        try:
            return await asyncio.to_thread(run)
        except GoogleAdsException as e:
            raise self._classify_google_error(e) from e
        except DeadlineExceeded as e:
            raise self._deadline_error() from e

    def _deadline_error(self, campaign_id: Optional[str] = None) -> TransientError:
        return TransientError(
            f"Google Ads call exceeded its {self.timeout_seconds}s deadline",
            platform=self.platform,
            campaign_id=campaign_id,
        )

    def _classify_google_error(self, error: GoogleAdsException, campaign_id: Optional[str] = None) -> AdapterError:
        """Map GoogleAdsFailure error codes onto the adapter taxonomy"""
        codes = " ".join(str(err.error_code) for err in error.failure.errors).lower()
        messages = "; ".join(err.message for err in error.failure.errors) or str(error)

        if any(code in codes for code in AUTH_ERROR_CODES):
            return AuthError(f"Google Ads rejected credentials: {messages}", platform=self.platform, campaign_id=campaign_id)
        if any(code in codes for code in TRANSIENT_ERROR_CODES):
            return TransientError(f"Google Ads temporarily unavailable: {messages}", platform=self.platform, campaign_id=campaign_id)

        log.error(f"Google Ads API error (request {error.request_id}): {messages}")
        return AdapterError(f"Google Ads API error: {messages}", platform=self.platform, campaign_id=campaign_id)
