"""
Derived KPI calculation
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Mapping, Any

from liveperf.connectors.base import MetricBundle, RAW_COUNTERS

STORAGE_PLACES = Decimal("0.0001")
DISPLAY_PLACES = Decimal("0.01")

DERIVED_FIELDS = ("ctr", "cpc", "conversion_rate", "cost_per_conversion", "roas")

# snake_case attribute -> API / cached-metrics key
CAMEL_KEYS = {
    "impressions": "impressions",
    "clicks": "clicks",
    "conversions": "conversions",
    "spend": "spend",
    "revenue": "revenue",
    "ctr": "ctr",
    "cpc": "cpc",
    "conversion_rate": "conversionRate",
    "cost_per_conversion": "costPerConversion",
    "roas": "roas",
}


def round_half_up(value: float, places: Decimal = STORAGE_PLACES) -> float:
    """Round via Decimal so repeated calculation is byte-identical"""
    return float(Decimal(repr(float(value))).quantize(places, rounding=ROUND_HALF_UP))


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if not denominator:
        return 0.0
    return round_half_up(numerator / denominator * scale)


@dataclass(frozen=True)
class PerformanceMetrics:
    """Raw counters plus derived KPIs"""
    impressions: float
    clicks: float
    conversions: float
    spend: float
    revenue: float
    ctr: float
    cpc: float
    conversion_rate: float
    cost_per_conversion: float
    roas: float

    @property
    def raw(self) -> MetricBundle:
        return MetricBundle(**{name: getattr(self, name) for name in RAW_COUNTERS})

    def to_dict(self) -> Dict[str, float]:
        """camelCase dict used for the cached metrics and API responses"""
        return {camel: getattr(self, attr) for attr, camel in CAMEL_KEYS.items()}

    def to_display(self) -> Dict[str, float]:
        """Same as to_dict with money and ratios rounded to 2 places"""
        data = self.to_dict()
        for key in ("spend", "revenue", "ctr", "cpc", "conversionRate", "costPerConversion", "roas"):
            data[key] = round_half_up(data[key], DISPLAY_PLACES)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PerformanceMetrics":
        """Rebuild from a cached metrics dict; derived values are recomputed"""
        bundle = MetricBundle.from_counts(**{name: (data or {}).get(name) for name in RAW_COUNTERS})
        return calculate_derived_metrics(bundle)


def calculate_derived_metrics(bundle: MetricBundle) -> PerformanceMetrics:
    """
    Derive KPIs from raw counters.

    ctr and conversion_rate are percentages. Every ratio is 0 when its
    denominator is 0.
    """
    spend = round_half_up(bundle.spend)
    revenue = round_half_up(bundle.revenue)

    return PerformanceMetrics(
        impressions=bundle.impressions,
        clicks=bundle.clicks,
        conversions=bundle.conversions,
        spend=spend,
        revenue=revenue,
        ctr=_ratio(bundle.clicks, bundle.impressions, 100),
        cpc=_ratio(bundle.spend, bundle.clicks),
        conversion_rate=_ratio(bundle.conversions, bundle.clicks, 100),
        cost_per_conversion=_ratio(bundle.spend, bundle.conversions),
        roas=_ratio(bundle.revenue, bundle.spend),
    )


def sum_bundles(bundles: Iterable[MetricBundle]) -> MetricBundle:
    totals = {name: 0 for name in RAW_COUNTERS}
    for bundle in bundles:
        for name in RAW_COUNTERS:
            totals[name] += getattr(bundle, name)
    return MetricBundle(**totals)


def aggregate(bundles: Iterable[MetricBundle]) -> PerformanceMetrics:
    """Sum raw counters and recompute derived KPIs from the sums"""
    return calculate_derived_metrics(sum_bundles(bundles))
