"""
Error taxonomy for the live performance engine.

Adapter and store errors are reported, not fatal: the sync orchestrator catches
them per campaign so one failing platform never aborts its siblings. Only the
user-initiated force-sync surfaces them to the HTTP caller.
"""
from typing import Any, Dict, Optional


class LivePerformanceError(Exception):
    """Base class for every error raised by the engine"""

    http_status = 500

    def __init__(self, message: str, platform: Optional[str] = None, campaign_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.campaign_id = campaign_id

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Typed error body for API responses"""
        body = {"type": self.error_type, "message": self.message}
        if self.platform:
            body["platform"] = self.platform
        if self.campaign_id:
            body["campaignId"] = self.campaign_id
        return body


# Adapter-level errors

class AdapterError(LivePerformanceError):
    """A platform adapter could not produce a metric bundle"""
    http_status = 502


class MissingCredentials(AdapterError):
    """Credentials absent or incomplete; no network call was attempted"""
    http_status = 503


class AuthError(AdapterError):
    """The platform rejected the supplied credentials"""
    http_status = 502


class TransientError(AdapterError):
    """Network failure, timeout or rate limit; safe to retry later"""
    http_status = 503


class UnsupportedPlatform(AdapterError):
    """No adapter is registered for the campaign's platform"""
    http_status = 501


# Store / evaluation

class StoreConflict(LivePerformanceError):
    """A concurrent writer claimed the same snapshot key"""
    http_status = 503


class EvaluationSkipped(LivePerformanceError):
    """Alerts were not evaluated because the cycle produced no metrics"""
    http_status = 500


class CampaignNotFound(LivePerformanceError):
    http_status = 404
