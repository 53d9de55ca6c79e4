"""
Time-series store for performance snapshots

One row per (campaign, date, hour, granularity). Writes carry the sequence
number of the sync attempt that produced them and the highest sequence wins.
The unique key and that sequence check are the only guards; the store keeps
no per-key state and never commits. The caller owns the transaction.
"""
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from liveperf.errors import StoreConflict
from liveperf.models.performance import GRANULARITIES, NO_HOUR, PerformanceSnapshot
from liveperf.services.metric_calculator import PerformanceMetrics, aggregate, DERIVED_FIELDS
from liveperf.connectors.base import MetricBundle, RAW_COUNTERS
from liveperf.utils.logger import log

INSERTED = "inserted"
UPDATED = "updated"
STALE = "stale"


def period_bounds(day: date, granularity: str) -> Tuple[date, date]:
    """First and last day of the period containing `day`"""
    if granularity in ("hourly", "daily"):
        return day, day
    if granularity == "weekly":
        start = day - timedelta(days=day.weekday())
        return start, start + timedelta(days=6)
    if granularity == "monthly":
        last = monthrange(day.year, day.month)[1]
        return day.replace(day=1), day.replace(day=last)
    raise ValueError(f"Unknown granularity '{granularity}'")


@dataclass(frozen=True)
class SnapshotKey:
    campaign_id: str
    date: date
    granularity: str
    hour: Optional[int] = None

    def __post_init__(self):
        if self.granularity not in GRANULARITIES:
            raise ValueError(f"Unknown granularity '{self.granularity}'")
        if self.granularity == "hourly":
            if self.hour is None or not 0 <= self.hour <= 23:
                raise ValueError(f"Hourly snapshots need an hour in 0-23, got {self.hour!r}")
        elif self.hour is not None:
            raise ValueError(f"{self.granularity} snapshots must not carry an hour")

    @property
    def hour_slot(self) -> int:
        return NO_HOUR if self.hour is None else self.hour

    @classmethod
    def for_period(cls, campaign_id: str, day: date, granularity: str, hour: Optional[int] = None) -> "SnapshotKey":
        """Key for the period containing `day` (weekly -> Monday, monthly -> 1st)"""
        start, _ = period_bounds(day, granularity)
        return cls(campaign_id=campaign_id, date=start, granularity=granularity, hour=hour)


class SnapshotStore:
    """Idempotent upserts and range queries over performance_snapshots"""

    def upsert(
        self,
        db: Session,
        key: SnapshotKey,
        metrics: PerformanceMetrics,
        sync_seq: int,
        synced_at: Optional[datetime] = None,
        **attrs,
    ) -> str:
        """
        Insert or replace the snapshot for `key`.

        Returns "inserted", "updated", or "stale" when the stored row came
        from a newer sync. Extra attrs (user_id, platform, platform_campaign_id)
        are copied onto the row.

        Raises:
            StoreConflict: another process inserted the same key concurrently
        """
        row = db.query(PerformanceSnapshot).filter(
            PerformanceSnapshot.campaign_id == key.campaign_id,
            PerformanceSnapshot.date == key.date,
            PerformanceSnapshot.hour_slot == key.hour_slot,
            PerformanceSnapshot.granularity == key.granularity,
        ).first()

        if row is not None and row.sync_seq > sync_seq:
            log.info(
                f"Ignoring stale snapshot for {key.campaign_id} {key.granularity} {key.date} "
                f"(seq {sync_seq} < stored {row.sync_seq})"
            )
            return STALE

        result = UPDATED
        if row is None:
            row = PerformanceSnapshot(
                campaign_id=key.campaign_id,
                date=key.date,
                hour=key.hour,
                hour_slot=key.hour_slot,
                granularity=key.granularity,
            )
            db.add(row)
            result = INSERTED

        for name in RAW_COUNTERS + DERIVED_FIELDS:
            setattr(row, name, getattr(metrics, name))
        for name, value in attrs.items():
            setattr(row, name, value)
        row.sync_seq = sync_seq
        row.synced_at = synced_at or datetime.utcnow()

        try:
            db.flush()
        except IntegrityError as e:
            raise StoreConflict(
                f"Concurrent write to {key.granularity} snapshot {key.date} hour={key.hour}",
                campaign_id=key.campaign_id,
            ) from e

        return result

    def query(
        self,
        db: Session,
        campaign_id: Union[str, Iterable[str]],
        start: date,
        end: date,
        granularity: str = "daily",
    ) -> List[PerformanceSnapshot]:
        """Snapshots in [start, end] ordered by date then hour"""
        q = db.query(PerformanceSnapshot).filter(
            PerformanceSnapshot.granularity == granularity,
            PerformanceSnapshot.date >= start,
            PerformanceSnapshot.date <= end,
        )
        if isinstance(campaign_id, str):
            q = q.filter(PerformanceSnapshot.campaign_id == campaign_id)
        else:
            q = q.filter(PerformanceSnapshot.campaign_id.in_(list(campaign_id)))

        return q.order_by(PerformanceSnapshot.date.asc(), PerformanceSnapshot.hour_slot.asc()).all()

    def rollup(
        self,
        db: Session,
        campaign_id: str,
        day: date,
        granularity: str,
        sync_seq: int,
        synced_at: Optional[datetime] = None,
        **attrs,
    ) -> str:
        """Re-derive the weekly/monthly snapshot containing `day` from its daily rows"""
        if granularity not in ("weekly", "monthly"):
            raise ValueError(f"Cannot roll up into '{granularity}'")

        start, end = period_bounds(day, granularity)
        daily = self.query(db, campaign_id, start, end, "daily")
        metrics = aggregate(
            MetricBundle(**{name: getattr(row, name) for name in RAW_COUNTERS}) for row in daily
        )
        key = SnapshotKey.for_period(campaign_id, day, granularity)
        return self.upsert(db, key, metrics, sync_seq, synced_at=synced_at, **attrs)
