"""
Campaign sync orchestration tests.

Guards against:
1. Duplicate snapshots when the same data is synced twice
2. One platform failure clobbering another campaign's data
3. A late, older sync overwriting newer cached metrics or snapshots
4. Retrying errors that will never succeed
"""
import asyncio
import time
from datetime import timedelta

import pytest

from conftest import HEALTHY, SCENARIO, FakeConnector, run
from liveperf.connectors import ConnectorRegistry
from liveperf.errors import (
    AuthError, CampaignNotFound, MissingCredentials, TransientError, UnsupportedPlatform,
)
from liveperf.models.campaign import Campaign, CampaignAlert
from liveperf.models.performance import PerformanceSnapshot
from liveperf.models.user import User
from liveperf.scheduler import LivePerformanceScheduler
from liveperf.services.repositories import CampaignRepository, CredentialsRepository
from liveperf.services.sync_orchestrator import FAILED, SUCCESS, SUPERSEDED, CampaignSyncOrchestrator


def load(session_factory, model, **filters):
    session = session_factory()
    try:
        return session.query(model).filter_by(**filters).all()
    finally:
        session.close()


def campaign(session_factory, campaign_id):
    return load(session_factory, Campaign, id=campaign_id)[0]


def target(services, campaign_id):
    return services.campaigns.get(campaign_id)


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------

def test_successful_sync_writes_snapshots_alerts_and_cache(services, session_factory, clock):
    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert outcome.status == SUCCESS
    assert outcome.snapshots == {"hourly": "inserted", "daily": "inserted", "weekly": "inserted", "monthly": "inserted"}
    assert outcome.evaluation == "evaluated"

    rows = load(session_factory, PerformanceSnapshot, campaign_id="camp-google")
    by_granularity = {r.granularity: r for r in rows}
    assert set(by_granularity) == {"hourly", "daily", "weekly", "monthly"}
    assert by_granularity["hourly"].hour == clock.now.hour
    assert by_granularity["daily"].cost_per_conversion == 66.6667

    cached = campaign(session_factory, "camp-google")
    assert cached.metrics["roas"] == 1.5
    assert cached.metrics["costPerConversion"] == 66.6667
    assert cached.metrics_sync_seq == outcome.sync_seq
    assert cached.last_synced_at == clock.now
    assert cached.last_sync_error is None

    alerts = load(session_factory, CampaignAlert, campaign_id="camp-google")
    assert [a.rule for a in alerts] == ["low_roas"]
    assert outcome.alerts[0]["rule"] == "low_roas"


def test_two_identical_syncs_are_idempotent(services, session_factory):
    first = run(services.orchestrator.sync_campaign(target(services, "camp-google")))
    second = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert second.sync_seq > first.sync_seq
    assert second.snapshots["daily"] == "updated"

    rows = load(session_factory, PerformanceSnapshot, campaign_id="camp-google")
    assert len(rows) == 4
    assert first.metrics.to_dict() == second.metrics.to_dict()


def test_cooldown_prevents_duplicate_alerts_across_syncs(services, session_factory, clock):
    run(services.orchestrator.sync_campaign(target(services, "camp-google")))
    clock.now = clock.now + timedelta(minutes=5)
    run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert len(load(session_factory, CampaignAlert, campaign_id="camp-google")) == 1

    clock.now = clock.now + timedelta(minutes=61)
    run(services.orchestrator.sync_campaign(target(services, "camp-google")))
    assert len(load(session_factory, CampaignAlert, campaign_id="camp-google")) == 2


def test_zero_cooldown_appends_every_cycle(services, session_factory, settings):
    settings.alert_cooldown_minutes = 0
    run(services.orchestrator.sync_campaign(target(services, "camp-google")))
    run(services.orchestrator.sync_campaign(target(services, "camp-google")))
    assert len(load(session_factory, CampaignAlert, campaign_id="camp-google")) == 2


def test_budget_pacing_uses_todays_spend_for_long_running_campaign(services, session_factory, google_connector,
                                                                     clock):
    session = session_factory()
    session.query(Campaign).filter_by(id="camp-google").update(
        {"daily_budget": 100, "launched_at": clock.now - timedelta(days=10)}
    )
    session.commit()
    session.close()
    google_connector.responses["111"] = {
        "impressions": 5000, "clicks": 200, "conversions": 20, "spend": 300, "revenue": 1500,
    }

    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert [a["rule"] for a in outcome.alerts] == ["budget_pacing"]
    alert = load(session_factory, CampaignAlert, campaign_id="camp-google")[0]
    assert alert.value == 300.0
    assert alert.threshold == 120.0


def test_alerts_not_evaluated_when_user_disabled_them(services, session_factory):
    session = session_factory()
    session.query(User).filter_by(id="user-1").update({"performance_alerts": False})
    session.commit()
    session.close()

    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))
    assert outcome.status == SUCCESS
    assert outcome.evaluation == "disabled"
    assert load(session_factory, CampaignAlert) == []


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

def test_failure_isolated_from_sibling_campaign(services, session_factory, google_connector):
    session = session_factory()
    session.query(Campaign).filter_by(id="camp-google").update({"metrics": {"impressions": 1, "clicks": 1}})
    session.commit()
    session.close()

    google_connector.responses["111"] = AuthError("token revoked")
    services.scheduler.add_active_user("user-1")
    summary = run(services.scheduler.run_pass())

    assert summary["campaigns"] == 2
    assert summary["succeeded"] == 1
    assert summary["failed"] == 1

    failed = campaign(session_factory, "camp-google")
    assert failed.metrics == {"impressions": 1, "clicks": 1}
    assert failed.last_sync_error.startswith("AuthError")
    assert failed.last_sync_attempt_at is not None
    assert load(session_factory, PerformanceSnapshot, campaign_id="camp-google") == []

    synced = campaign(session_factory, "camp-meta")
    assert synced.metrics["roas"] == 5.0
    assert len(load(session_factory, PerformanceSnapshot, campaign_id="camp-meta")) == 4


def test_failed_sync_skips_alert_evaluation(services, google_connector, session_factory):
    google_connector.responses["111"] = AuthError("token revoked")
    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert outcome.status == FAILED
    assert isinstance(outcome.error, AuthError)
    assert outcome.evaluation == "skipped"
    assert outcome.to_dict()["evaluationSkipped"]["type"] == "EvaluationSkipped"
    assert load(session_factory, CampaignAlert) == []
    assert services.health.status("google").status == "error"


def test_missing_credentials_fail_before_any_call(services, google_connector, session_factory):
    session = session_factory()
    session.query(User).filter_by(id="user-1").update({"google_ads_customer_id": None})
    session.commit()
    session.close()

    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert outcome.status == FAILED
    assert isinstance(outcome.error, MissingCredentials)
    assert google_connector.calls == []
    assert services.health.status("google").status == "not_configured"


def test_unsupported_platform(services, session_factory):
    session = session_factory()
    session.add(Campaign(id="camp-tiktok", user_id="user-1", name="Clips", platform="tiktok", status="active"))
    session.commit()
    session.close()

    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-tiktok")))
    assert outcome.status == FAILED
    assert isinstance(outcome.error, UnsupportedPlatform)


def test_transient_error_is_retried(services, google_connector, sleeper):
    google_connector.responses["111"] = [TransientError("rate limited"), dict(SCENARIO)]

    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert outcome.status == SUCCESS
    assert outcome.retry_stats.attempts == 2
    assert outcome.retry_stats.retries == 1
    assert len(google_connector.calls) == 2
    assert len(sleeper.delays) == 1


def test_transient_errors_give_up_after_max_attempts(services, google_connector, sleeper):
    google_connector.responses["111"] = [TransientError("503"), TransientError("503"), TransientError("503")]

    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert outcome.status == FAILED
    assert isinstance(outcome.error, TransientError)
    assert outcome.retry_stats.attempts == 3
    assert len(sleeper.delays) == 2


def test_auth_error_is_not_retried(services, google_connector, sleeper):
    google_connector.responses["111"] = AuthError("bad token")
    run(services.orchestrator.sync_campaign(target(services, "camp-google")))
    assert len(google_connector.calls) == 1
    assert sleeper.delays == []


def test_adapter_timeout_becomes_transient_error(session_factory, settings, seeded, clock, sleeper):
    settings.adapter_timeout_seconds = 0.05
    settings.adapter_max_attempts = 2

    async def hang():
        await asyncio.sleep(5)
        return dict(SCENARIO)

    connector = FakeConnector("google", required=("customer_id",), responses={"111": hang})
    campaigns = CampaignRepository(session_factory)
    orchestrator = CampaignSyncOrchestrator(
        registry=ConnectorRegistry([connector]),
        campaigns=campaigns,
        credentials=CredentialsRepository(session_factory, settings),
        session_factory=session_factory,
        settings=settings,
        clock=clock,
        sleep=sleeper,
    )

    started = time.monotonic()
    outcome = run(orchestrator.sync_campaign(campaigns.get("camp-google")))

    assert time.monotonic() - started < 2
    assert outcome.status == FAILED
    assert isinstance(outcome.error, TransientError)
    assert "timed out" in outcome.error.message
    assert len(connector.calls) == 2


def test_older_sync_is_superseded(services, session_factory):
    future_seq = time.time_ns() + 10 ** 15
    session = session_factory()
    session.query(Campaign).filter_by(id="camp-google").update(
        {"metrics_sync_seq": future_seq, "metrics": {"impressions": 7}}
    )
    session.commit()
    session.close()

    outcome = run(services.orchestrator.sync_campaign(target(services, "camp-google")))

    assert outcome.status == SUPERSEDED
    cached = campaign(session_factory, "camp-google")
    assert cached.metrics == {"impressions": 7}
    assert cached.metrics_sync_seq == future_seq
    assert load(session_factory, PerformanceSnapshot, campaign_id="camp-google") == []
    assert load(session_factory, CampaignAlert) == []


def test_overlapping_syncs_newest_sequence_wins(services, session_factory, google_connector):
    async def overlap():
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return dict(SCENARIO)

        google_connector.responses["111"] = [slow, dict(HEALTHY)]
        first = asyncio.ensure_future(services.orchestrator.sync_campaign(target(services, "camp-google")))
        while not google_connector.calls:
            await asyncio.sleep(0)
        second = await services.orchestrator.sync_campaign(target(services, "camp-google"))
        gate.set()
        return await first, second

    first, second = run(overlap())

    assert first.sync_seq < second.sync_seq
    assert second.status == SUCCESS
    assert first.status == SUPERSEDED

    cached = campaign(session_factory, "camp-google")
    assert cached.metrics["roas"] == 5.0
    assert cached.metrics_sync_seq == second.sync_seq

    rows = load(session_factory, PerformanceSnapshot, campaign_id="camp-google")
    assert len(rows) == 4
    assert {r.impressions for r in rows} == {5000}
    assert {r.sync_seq for r in rows} == {second.sync_seq}
    assert load(session_factory, CampaignAlert, campaign_id="camp-google") == []


def test_sequence_numbers_strictly_increase(services):
    seqs = [services.orchestrator.next_sequence() for _ in range(100)]
    assert seqs == sorted(set(seqs))


# ---------------------------------------------------------------------------
# Force sync
# ---------------------------------------------------------------------------

def test_force_sync_raises_typed_error(services, google_connector):
    google_connector.responses["111"] = AuthError("bad token")
    with pytest.raises(AuthError):
        run(services.orchestrator.force_sync("camp-google"))


def test_force_sync_unknown_campaign(services):
    with pytest.raises(CampaignNotFound):
        run(services.orchestrator.force_sync("nope"))


def test_force_sync_returns_outcome(services):
    outcome = run(services.orchestrator.force_sync("camp-meta"))
    assert outcome.status == SUCCESS
    assert outcome.to_dict()["metrics"]["roas"] == 5.0


def test_scheduler_pass_ignores_paused_and_other_users(services, google_connector):
    services.scheduler.add_active_user("user-1")
    summary = run(services.scheduler.run_pass())
    assert summary["campaigns"] == 2
    assert [ref.platform_campaign_id for ref in google_connector.calls] == ["111"]


def test_scheduler_class_is_wired(services):
    assert isinstance(services.scheduler, LivePerformanceScheduler)
