"""
Meta (Facebook/Instagram) Ads connector
Reads campaign or ad account insights from the Graph API
"""
import json
from datetime import date
from typing import Any, Dict, Mapping, Optional

import aiohttp

from liveperf.config import get_settings
from liveperf.connectors.base import BaseConnector, CampaignRef, PlatformCredentials
from liveperf.errors import AdapterError, AuthError, TransientError
from liveperf.utils.logger import log

settings = get_settings()

INSIGHT_FIELDS = "impressions,clicks,spend,actions,action_values"

# Action types counted as conversions, in order of preference
PURCHASE_ACTION_TYPES = (
    "purchase",
    "omni_purchase",
    "offsite_conversion.fb_pixel_purchase",
)

# Graph API error codes
INVALID_TOKEN_CODE = 190
RATE_LIMIT_CODES = (4, 17, 32, 613, 80004)


def _action_value(actions: Any) -> float:
    """Pick the first purchase-type action value from an insights actions list"""
    if not actions:
        return 0.0
    by_type = {a.get("action_type"): a.get("value") for a in actions if isinstance(a, dict)}
    for action_type in PURCHASE_ACTION_TYPES:
        if by_type.get(action_type) is not None:
            return float(by_type[action_type])
    return 0.0


def parse_insights(payload: Mapping[str, Any]) -> Dict[str, float]:
    """
    Sum an /insights response into raw counters.

    Graph API returns numbers as strings; rows with no delivery are omitted,
    so an empty data list means zeros.
    """
    totals = {"impressions": 0.0, "clicks": 0.0, "conversions": 0.0, "spend": 0.0, "revenue": 0.0}
    for row in payload.get("data") or []:
        totals["impressions"] += float(row.get("impressions") or 0)
        totals["clicks"] += float(row.get("clicks") or 0)
        totals["spend"] += float(row.get("spend") or 0)
        totals["conversions"] += _action_value(row.get("actions"))
        totals["revenue"] += _action_value(row.get("action_values"))
    return totals


def classify_graph_error(status: int, body: Optional[Mapping[str, Any]], platform: str = "meta",
                         campaign_id: Optional[str] = None) -> AdapterError:
    """Map a failed Graph API response onto the adapter taxonomy"""
    error = (body or {}).get("error") or {}
    code = error.get("code")
    message = error.get("message") or f"HTTP {status}"

    if status in (401, 403) or code == INVALID_TOKEN_CODE:
        return AuthError(f"Meta rejected credentials: {message}", platform=platform, campaign_id=campaign_id)
    if status == 429 or status >= 500 or code in RATE_LIMIT_CODES or error.get("is_transient"):
        return TransientError(f"Meta API unavailable: {message}", platform=platform, campaign_id=campaign_id)
    return AdapterError(f"Meta API error: {message}", platform=platform, campaign_id=campaign_id)


class MetaAdsConnector(BaseConnector):
    """Connector for the Meta Marketing API"""

    platform = "meta"
    display_name = "Meta Ads"
    required_credentials = ("access_token", "ad_account_id")

    def __init__(self, api_version: Optional[str] = None, base_url: str = "https://graph.facebook.com",
                 timeout_seconds: float = 30.0):
        self.api_version = api_version or settings.meta_api_version
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    def _node(self, ref: CampaignRef, credentials: PlatformCredentials) -> str:
        if ref.platform_campaign_id:
            return str(ref.platform_campaign_id)
        account_id = str(credentials.get("ad_account_id"))
        return account_id if account_id.startswith("act_") else f"act_{account_id}"

    async def _get(self, path: str, params: Dict[str, Any], campaign_id: Optional[str] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{self.api_version}/{path}"
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, params=params) as response:
                try:
                    body = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, json.JSONDecodeError):
                    body = None

                if response.status != 200 or (body and "error" in body):
                    raise classify_graph_error(response.status, body, self.platform, campaign_id)
                return body or {}

    async def _fetch_raw(self, ref: CampaignRef, credentials: PlatformCredentials) -> Mapping[str, Any]:
        report_date = (ref.report_date or date.today()).isoformat()
        params = {
            "fields": INSIGHT_FIELDS,
            "time_range": json.dumps({"since": report_date, "until": report_date}),
            "access_token": credentials.get("access_token"),
        }
        if not ref.platform_campaign_id:
            params["level"] = "account"

        try:
            payload = await self._get(f"{self._node(ref, credentials)}/insights", params, ref.campaign_id)
        except aiohttp.ClientError as e:
            raise TransientError(f"Meta connection error: {e}", platform=self.platform, campaign_id=ref.campaign_id) from e

        totals = parse_insights(payload)
        log.debug(f"Meta metrics for {ref.platform_campaign_id or 'account'}: {totals}")
        return totals

    async def _probe(self, credentials: PlatformCredentials) -> bool:
        params = {"fields": "id,name", "access_token": credentials.get("access_token")}
        try:
            await self._get(self._node(CampaignRef(platform=self.platform), credentials), params)
        except aiohttp.ClientError as e:
            raise TransientError(f"Meta connection error: {e}", platform=self.platform) from e
        return True
