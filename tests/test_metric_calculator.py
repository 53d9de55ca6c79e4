"""
Derived KPI calculation tests.

Guards against:
1. NaN/Infinity when a denominator is zero
2. Derived values drifting between repeated calculations
3. Totals that average ratios instead of recomputing from summed counters
"""
import math

import pytest

from liveperf.connectors.base import MetricBundle
from liveperf.services.metric_calculator import (
    DISPLAY_PLACES,
    PerformanceMetrics,
    aggregate,
    calculate_derived_metrics,
    round_half_up,
)


def test_zero_denominators_give_zero_not_nan():
    metrics = calculate_derived_metrics(MetricBundle())
    for name in ("ctr", "cpc", "conversion_rate", "cost_per_conversion", "roas"):
        value = getattr(metrics, name)
        assert value == 0
        assert math.isfinite(value)


def test_each_ratio_is_zero_only_when_its_own_denominator_is_zero():
    # clicks but no impressions: ctr 0, cpc still defined
    metrics = calculate_derived_metrics(MetricBundle.from_counts(clicks=10, spend=25))
    assert metrics.ctr == 0
    assert metrics.cpc == 2.5
    assert metrics.conversion_rate == 0
    assert metrics.cost_per_conversion == 0
    assert metrics.roas == 0


def test_reference_scenario():
    bundle = MetricBundle.from_counts(impressions=10000, clicks=300, conversions=9, spend=600, revenue=900)
    metrics = calculate_derived_metrics(bundle)

    assert metrics.ctr == 3.0
    assert metrics.cpc == 2.0
    assert metrics.conversion_rate == 3.0
    assert metrics.cost_per_conversion == 66.6667
    assert metrics.roas == 1.5
    assert metrics.to_display()["costPerConversion"] == 66.67


def test_repeated_calculation_is_identical():
    bundle = MetricBundle.from_counts(impressions=7, clicks=3, conversions=1, spend=10, revenue=11)
    first = calculate_derived_metrics(bundle).to_dict()
    second = calculate_derived_metrics(bundle).to_dict()
    assert first == second
    assert first["cpc"] == 3.3333
    assert first["ctr"] == 42.8571


def test_round_half_up():
    assert round_half_up(0.00005) == 0.0001
    assert round_half_up(2.675, places=DISPLAY_PLACES) == 2.68


def test_to_dict_uses_camel_case_keys():
    data = calculate_derived_metrics(MetricBundle.from_counts(impressions=100, clicks=10)).to_dict()
    assert set(data) == {
        "impressions", "clicks", "conversions", "spend", "revenue",
        "ctr", "cpc", "conversionRate", "costPerConversion", "roas",
    }


def test_from_dict_recomputes_derived_values():
    stored = {"impressions": 1000, "clicks": 50, "conversions": 5, "spend": 100, "revenue": 400, "roas": 99}
    metrics = PerformanceMetrics.from_dict(stored)
    assert metrics.roas == 4.0
    assert metrics.ctr == 5.0


def test_aggregate_recomputes_from_sums():
    totals = aggregate([
        MetricBundle.from_counts(impressions=1000, clicks=10, spend=10, revenue=50),
        MetricBundle.from_counts(impressions=3000, clicks=110, spend=90, revenue=50),
    ])
    assert totals.impressions == 4000
    assert totals.clicks == 120
    assert totals.ctr == 3.0
    assert totals.roas == 1.0


def test_aggregate_of_nothing_is_zero():
    totals = aggregate([])
    assert totals.to_dict()["spend"] == 0
    assert totals.roas == 0


class TestMetricBundleValidation:
    def test_missing_values_default_to_zero(self):
        bundle = MetricBundle.from_counts(impressions=None, clicks=5)
        assert bundle.impressions == 0
        assert bundle.clicks == 5
        assert bundle.revenue == 0

    def test_numeric_strings_are_accepted(self):
        assert MetricBundle.from_counts(spend="12.50").spend == 12.5

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            MetricBundle.from_counts(clicks=-1)

    def test_non_numeric_values_rejected(self):
        with pytest.raises(ValueError):
            MetricBundle.from_counts(spend="lots")

    def test_infinite_values_rejected(self):
        with pytest.raises(ValueError):
            MetricBundle.from_counts(revenue=float("inf"))
