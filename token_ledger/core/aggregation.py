"""
Usage aggregation engine.

Turns a flat, unordered collection of dated usage events into
time-bucketed series for charting, plus current-period totals.

Everything here is a pure function of its arguments:
1. No I/O and no clock reads; "now" is always passed in
2. Duplicate rows for one (source, day) are summed, never rejected
3. Every bucket carries every series key, zero-filled
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .periods import (
    DEFAULT_WINDOW,
    DateLike,
    Period,
    bucket_for,
    enumerate_buckets,
    to_day,
)
from .selection import Selection, resolve_series, selected_source_ids
from token_ledger.storage.models import Source, UsageEvent

FoldKey = Tuple[str, date]


def _exact_sum(values: Iterable[float]) -> float:
    """Correctly rounded sum, so the result does not depend on order.

    math.fsum rejects inf + -inf, so non-finite input falls back to a
    plain sum, which yields nan or inf as usual.
    """
    values = list(values)
    if all(math.isfinite(value) for value in values):
        return math.fsum(values)
    return sum(values, 0.0)


@dataclass(frozen=True)
class BucketRecord:
    """Totals for one bucket, one value per series.

    The series key set is fixed for a single build_series call and kept
    in selection order.
    """
    label: str
    start: date
    end: date
    values: Tuple[Tuple[str, float], ...] = ()

    @property
    def series_names(self) -> List[str]:
        return [name for name, _ in self.values]

    @property
    def total(self) -> float:
        return _exact_sum(value for _, value in self.values)

    def __getitem__(self, series_name: str) -> float:
        for name, value in self.values:
            if name == series_name:
                return value
        raise KeyError(series_name)

    def __iter__(self) -> Iterator[Tuple[str, float]]:
        return iter(self.values)

    def as_dict(self) -> Dict[str, object]:
        """Flatten into a chart-friendly mapping with a "label" key."""
        record: Dict[str, object] = {"label": self.label}
        record.update(self.values)
        return record


def fold_events(events: Iterable[UsageEvent]) -> Dict[FoldKey, float]:
    """Sum every event sharing a (source_id, day) key.

    Negative or non-finite amounts are producer bugs but are summed
    like any other number.

    Args:
        events: Events in any order, duplicates allowed

    Returns:
        Mapping of (source_id, day) to the summed amount
    """
    amounts: Dict[FoldKey, List[float]] = defaultdict(list)
    for event in events:
        amounts[(event.source_id, to_day(event.day))].append(event.amount)
    return {key: _exact_sum(values) for key, values in amounts.items()}


def _require_period(period: Period) -> Period:
    if not isinstance(period, Period):
        raise ValueError(f"Unsupported period: {period!r}")
    return period


def build_series(
    events: Iterable[UsageEvent],
    sources: Sequence[Source],
    selection: Selection,
    period: Period,
    window: int = DEFAULT_WINDOW,
    *,
    now: DateLike
) -> List[BucketRecord]:
    """Build the trailing bucketed series for a selection.

    Args:
        events: Usage events, any order, duplicates allowed
        sources: Known sources; display names become series keys
        selection: Which sources feed which series
        period: Bucket width
        window: Number of trailing buckets
        now: Moment the series is built for

    Returns:
        Exactly ``window`` records, oldest first. Records have no values
        when the selection matches no sources. Events dated after now
        are ignored.

    Raises:
        ValueError: If period is not a Period or window is below 1
    """
    period = _require_period(period)
    buckets = enumerate_buckets(now, period, window)
    series = resolve_series(selection, sources)

    # Index folded day totals by (bucket start, source) so each event is
    # visited once rather than once per bucket. Days after now are not
    # counted, so the current bucket matches current_period_total.
    first, last = buckets[0].start, to_day(now)
    by_bucket: Dict[Tuple[date, str], List[float]] = defaultdict(list)
    for (source_id, day), amount in fold_events(events).items():
        if first <= day <= last:
            by_bucket[(bucket_for(day, period).start, source_id)].append(amount)

    records = []
    for bucket in buckets:
        values = tuple(
            (name, _exact_sum(
                amount
                for source_id in ids
                for amount in by_bucket.get((bucket.start, source_id), ())
            ))
            for name, ids in series
        )
        records.append(BucketRecord(
            label=bucket.label,
            start=bucket.start,
            end=bucket.end,
            values=values
        ))
    return records


def current_period_total(
    events: Iterable[UsageEvent],
    selection: Selection,
    period: Period,
    *,
    now: DateLike,
    sources: Optional[Sequence[Source]] = None
) -> float:
    """Sum usage from the start of the current period through now.

    Week and month totals are "so far": events dated after today are
    excluded even when they fall inside the current week or month.

    Args:
        events: Usage events, any order, duplicates allowed
        selection: Which sources are summed
        period: Period to total
        now: Moment the total is computed for
        sources: Known sources; needed to resolve AllInGroup

    Returns:
        Summed amount, 0 when nothing matches

    Raises:
        ValueError: If period is not a Period
    """
    period = _require_period(period)
    today = to_day(now)
    start = bucket_for(today, period).start
    source_ids = selected_source_ids(selection, sources)

    amounts = []
    for (source_id, day), amount in fold_events(events).items():
        if source_ids is not None and source_id not in source_ids:
            continue
        if start <= day <= today:
            amounts.append(amount)
    return _exact_sum(amounts)
