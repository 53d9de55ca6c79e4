"""
Alert rule evaluation

Pure functions: given a campaign's fresh metrics and the alerts it already
has, decide which new alerts to raise. Persistence belongs to the caller.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from liveperf.config import Settings
from liveperf.services.metric_calculator import PerformanceMetrics

SEVERITY_RANK = {"info": 0, "warning": 1, "error": 2, "critical": 3}


@dataclass(frozen=True)
class AlertThresholds:
    low_ctr: float = 1.0
    low_ctr_min_impressions: int = 1000
    high_cpc: float = 5.0
    high_cpc_min_clicks: int = 10
    low_roas: float = 2.0
    low_roas_min_conversions: int = 3
    low_conversion_rate: float = 1.0
    low_conversion_rate_min_clicks: int = 50
    budget_pacing_factor: float = 1.2

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertThresholds":
        return cls(
            low_ctr=settings.alert_low_ctr_threshold,
            low_ctr_min_impressions=settings.alert_low_ctr_min_impressions,
            high_cpc=settings.alert_high_cpc_ceiling,
            high_cpc_min_clicks=settings.alert_high_cpc_min_clicks,
            low_roas=settings.alert_low_roas_threshold,
            low_roas_min_conversions=settings.alert_low_roas_min_conversions,
            low_conversion_rate=settings.alert_low_conversion_rate_threshold,
            low_conversion_rate_min_clicks=settings.alert_low_conversion_rate_min_clicks,
            budget_pacing_factor=settings.alert_budget_pacing_factor,
        )


@dataclass(frozen=True)
class AlertContext:
    """Campaign facts the rules need beyond its metrics"""
    campaign_id: str
    name: str
    daily_budget: float = 0.0


@dataclass
class AlertEvent:
    campaign_id: str
    type: str
    rule: str
    severity: str
    metric: str
    value: float
    threshold: float
    message: str
    suggestion: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)
    acknowledged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaignId": self.campaign_id,
            "type": self.type,
            "rule": self.rule,
            "severity": self.severity,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
            "message": self.message,
            "suggestion": self.suggestion,
            "acknowledged": self.acknowledged,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class AlertRule:
    """One threshold check; `check` returns the observed value when the rule fires"""
    id: str
    type: str
    severity: str
    metric: str
    threshold: Callable[[AlertThresholds, AlertContext], float]
    check: Callable[[PerformanceMetrics, AlertThresholds, AlertContext, datetime], Optional[float]]
    message: str
    suggestion: str


def _low_ctr(m, t, ctx, now):
    if m.impressions > t.low_ctr_min_impressions and m.ctr < t.low_ctr:
        return m.ctr
    return None


def _high_cpc(m, t, ctx, now):
    if m.clicks > t.high_cpc_min_clicks and m.cpc > t.high_cpc:
        return m.cpc
    return None


def _low_roas(m, t, ctx, now):
    if m.conversions > t.low_roas_min_conversions and m.roas < t.low_roas:
        return m.roas
    return None


def _low_conversion_rate(m, t, ctx, now):
    if m.clicks > t.low_conversion_rate_min_clicks and m.conversion_rate < t.low_conversion_rate:
        return m.conversion_rate
    return None


def _budget_pacing(m, t, ctx, now):
    # Connectors report the reporting date only, so spend is today's spend
    if not ctx.daily_budget or ctx.daily_budget <= 0:
        return None
    if m.spend > ctx.daily_budget * t.budget_pacing_factor:
        return m.spend
    return None


RULES: List[AlertRule] = [
    AlertRule(
        id="low_ctr",
        type="performance",
        severity="warning",
        metric="ctr",
        threshold=lambda t, ctx: t.low_ctr,
        check=_low_ctr,
        message='Low CTR detected ({value:.2f}%) for campaign "{name}".',
        suggestion="Consider optimizing ad creatives and headlines.",
    ),
    AlertRule(
        id="high_cpc",
        type="performance",
        severity="warning",
        metric="cpc",
        threshold=lambda t, ctx: t.high_cpc,
        check=_high_cpc,
        message='High CPC detected (${value:.2f}) for campaign "{name}".',
        suggestion="Review keyword bids and targeting.",
    ),
    AlertRule(
        id="low_roas",
        type="performance",
        severity="error",
        metric="roas",
        threshold=lambda t, ctx: t.low_roas,
        check=_low_roas,
        message='Low ROAS detected ({value:.2f}x) for campaign "{name}".',
        suggestion="Immediate optimization recommended: pause weak ad groups or shift budget.",
    ),
    AlertRule(
        id="low_conversion_rate",
        type="performance",
        severity="warning",
        metric="conversionRate",
        threshold=lambda t, ctx: t.low_conversion_rate,
        check=_low_conversion_rate,
        message='Low conversion rate ({value:.2f}%) for campaign "{name}".',
        suggestion="Check landing page relevance and conversion tracking.",
    ),
    AlertRule(
        id="budget_pacing",
        type="budget",
        severity="warning",
        metric="spend",
        threshold=lambda t, ctx: round(ctx.daily_budget * t.budget_pacing_factor, 2),
        check=_budget_pacing,
        message='Campaign "{name}" has spent ${value:.2f} today, above its daily budget.',
        suggestion="Lower bids or the daily budget cap to bring spend back in line.",
    ),
]


def _in_cooldown(rule_id: str, campaign_id: str, prior_alerts: Iterable[Any],
                 now: datetime, cooldown: timedelta) -> bool:
    if cooldown <= timedelta(0):
        return False
    for alert in prior_alerts:
        if alert.campaign_id != campaign_id or alert.rule != rule_id:
            continue
        if alert.created_at and now - alert.created_at < cooldown:
            return True
    return False


def evaluate(
    context: AlertContext,
    metrics: PerformanceMetrics,
    prior_alerts: Iterable[Any] = (),
    now: Optional[datetime] = None,
    cooldown: timedelta = timedelta(minutes=60),
    thresholds: Optional[AlertThresholds] = None,
    rules: Optional[List[AlertRule]] = None,
) -> List[AlertEvent]:
    """
    Evaluate every rule independently against `metrics`.

    A rule that already fired for this campaign within `cooldown` is
    suppressed. A zero cooldown re-fires on every evaluation.

    Args:
        context: Campaign facts (id, name, daily budget)
        metrics: Freshly calculated metrics
        prior_alerts: Existing alerts with campaign_id, rule and created_at
        now: Evaluation time
        cooldown: Per (campaign, rule) suppression window
        thresholds: Rule thresholds; defaults when omitted

    Returns:
        New alerts, most severe first
    """
    now = now or datetime.utcnow()
    thresholds = thresholds or AlertThresholds()
    prior_alerts = list(prior_alerts)

    events = []
    for rule in rules or RULES:
        value = rule.check(metrics, thresholds, context, now)
        if value is None:
            continue
        if _in_cooldown(rule.id, context.campaign_id, prior_alerts, now, cooldown):
            continue

        events.append(AlertEvent(
            campaign_id=context.campaign_id,
            type=rule.type,
            rule=rule.id,
            severity=rule.severity,
            metric=rule.metric,
            value=value,
            threshold=rule.threshold(thresholds, context),
            message=rule.message.format(value=value, name=context.name),
            suggestion=rule.suggestion,
            created_at=now,
        ))

    events.sort(key=lambda e: SEVERITY_RANK.get(e.severity, 0), reverse=True)
    return events
