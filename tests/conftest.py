"""
Shared fixtures: in-memory database, fake platform connectors, seeded
users/campaigns and a FastAPI test client.
"""
import asyncio
import os
from datetime import datetime

# Keep test runs off the filesystem; must be set before liveperf is imported
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("START_SCHEDULER", "false")

import pytest
from fastapi.testclient import TestClient

from liveperf.config import Settings
from liveperf.connectors import ConnectorRegistry
from liveperf.connectors.base import BaseConnector
from liveperf.main import build_services, create_app
from liveperf.models.base import init_db, make_engine, make_session_factory
from liveperf.models.campaign import Campaign
from liveperf.models.user import User

# Wednesday, mid-afternoon
NOW = datetime(2024, 6, 12, 14, 30)

SCENARIO = {"impressions": 10000, "clicks": 300, "conversions": 9, "spend": 600, "revenue": 900}
HEALTHY = {"impressions": 5000, "clicks": 200, "conversions": 20, "spend": 100, "revenue": 500}


def run(coro):
    """Drive a coroutine from a sync test"""
    return asyncio.run(coro)


class Clock:
    """Settable clock passed wherever the code takes `clock`"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeConnector(BaseConnector):
    """
    Connector whose responses are scripted per platform campaign id.

    A response is a counts dict, an exception to raise, an async callable,
    or a list of those consumed one per call.
    """

    def __init__(self, platform: str, required=(), responses=None):
        self.platform = platform
        self.display_name = platform.title()
        self.required_credentials = tuple(required)
        self.responses = responses if responses is not None else {}
        self.calls = []
        self.probe_error = None

    async def _fetch_raw(self, ref, credentials):
        self.calls.append(ref)
        response = self.responses.get(ref.platform_campaign_id, {})
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response()
        return response

    async def _probe(self, credentials):
        if self.probe_error is not None:
            raise self.probe_error
        return True


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        log_to_file=False,
        start_scheduler=False,
        google_ads_developer_token="dev-token",
        google_ads_client_id="client-id",
        google_ads_client_secret="client-secret",
        google_ads_refresh_token="refresh-token",
        meta_access_token=None,
        poll_interval_seconds=300,
        adapter_timeout_seconds=5.0,
        adapter_max_attempts=3,
        adapter_retry_base_delay=0.01,
        adapter_retry_max_delay=0.05,
        alert_cooldown_minutes=60,
    )


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def google_connector():
    return FakeConnector("google", required=("developer_token", "customer_id"), responses={"111": dict(SCENARIO)})


@pytest.fixture
def meta_connector():
    return FakeConnector("meta", required=("access_token", "ad_account_id"), responses={"222": dict(HEALTHY)})


@pytest.fixture
def registry(google_connector, meta_connector):
    return ConnectorRegistry([google_connector, meta_connector])


@pytest.fixture
def seeded(session_factory):
    """One user with a Google and a Meta campaign, plus a paused campaign"""
    session = session_factory()
    user = User(
        id="user-1",
        email="owner@example.com",
        google_ads_customer_id="123-456-7890",
        meta_ad_account_id="act_42",
        meta_access_token="meta-token",
        performance_alerts=True,
    )
    other = User(id="user-2", email="other@example.com", performance_alerts=True)
    session.add_all([user, other])
    session.add_all([
        Campaign(id="camp-google", user_id="user-1", name="Search Brand", platform="google",
                 platform_campaign_id="111", status="active", daily_budget=0),
        Campaign(id="camp-meta", user_id="user-1", name="Prospecting", platform="meta",
                 platform_campaign_id="222", status="active", daily_budget=0),
        Campaign(id="camp-paused", user_id="user-1", name="Old Promo", platform="google",
                 platform_campaign_id="333", status="paused"),
        Campaign(id="camp-other", user_id="user-2", name="Someone Else", platform="google",
                 platform_campaign_id="444", status="active"),
    ])
    session.commit()
    session.close()
    return {"user_id": "user-1", "google": "camp-google", "meta": "camp-meta"}


@pytest.fixture
def services(session_factory, settings, registry, clock, sleeper, seeded):
    return build_services(session_factory, settings, registry=registry, clock=clock, sleep=sleeper)


@pytest.fixture
def client(services):
    return TestClient(create_app(services))
