"""
Unit tests for the usage aggregation engine.

Tests folding, bucketed series and current-period totals.
"""

import math
from datetime import date, datetime

import pytest

from token_ledger.core.aggregation import (
    BucketRecord,
    build_series,
    current_period_total,
    fold_events,
)
from token_ledger.core.periods import Period
from token_ledger.core.selection import AggregateAll, AllInGroup, SingleSource
from token_ledger.storage.models import Source, UsageEvent


def make_source(source_id: str, group: str = "G", name: str = None) -> Source:
    return Source(source_id=source_id, display_name=name or source_id, group_tag=group)


def make_event(source_id: str, day: date, amount: float) -> UsageEvent:
    return UsageEvent(source_id=source_id, day=day, amount=amount)


SOURCES = [make_source("A"), make_source("B"), make_source("C", group="H")]

EVENTS = [
    make_event("A", date(2024, 1, 1), 100),
    make_event("A", date(2024, 1, 1), 50),
    make_event("B", date(2024, 1, 2), 30),
]


class TestFold:
    """Test event reduction by (source, day)."""

    def test_duplicates_are_summed(self):
        folded = fold_events(EVENTS)
        assert folded == {
            ("A", date(2024, 1, 1)): 150,
            ("B", date(2024, 1, 2)): 30,
        }

    def test_empty_input(self):
        assert fold_events([]) == {}

    def test_negative_amounts_are_not_clamped(self):
        folded = fold_events([
            make_event("A", date(2024, 1, 1), 10),
            make_event("A", date(2024, 1, 1), -15),
        ])
        assert folded[("A", date(2024, 1, 1))] == -5

    def test_non_finite_amounts_do_not_crash(self):
        folded = fold_events([
            make_event("A", date(2024, 1, 1), 10),
            make_event("A", date(2024, 1, 1), float("nan")),
        ])
        assert math.isnan(folded[("A", date(2024, 1, 1))])


class TestBuildSeriesScenarios:
    """Test the reference scenarios end to end."""

    def test_daily_per_source_series(self):
        records = build_series(
            EVENTS, SOURCES, AllInGroup("G"), Period.DAY, window=2, now=date(2024, 1, 2)
        )
        assert [r.as_dict() for r in records] == [
            {"label": "Jan 1", "A": 150, "B": 0},
            {"label": "Jan 2", "A": 0, "B": 30},
        ]

    def test_weekly_aggregate(self):
        records = build_series(
            EVENTS, SOURCES[:2], AggregateAll(), Period.WEEK, window=1, now=date(2024, 1, 2)
        )
        assert [r.as_dict() for r in records] == [{"label": "W1 Jan 1", "Total": 180}]

    def test_single_source(self):
        records = build_series(
            EVENTS, SOURCES, SingleSource("A"), Period.MONTH, window=2, now=date(2024, 1, 20)
        )
        assert [r.as_dict() for r in records] == [
            {"label": "Dec 2023", "A": 0},
            {"label": "Jan 2024", "A": 150},
        ]

    def test_datetime_now_is_accepted(self):
        records = build_series(
            EVENTS, SOURCES, AllInGroup("G"), Period.DAY, window=1,
            now=datetime(2024, 1, 2, 18, 45)
        )
        assert records[0]["B"] == 30


class TestBuildSeriesProperties:
    """Test invariants of build_series."""

    @pytest.mark.parametrize("period", list(Period))
    def test_duplicating_events_doubles_totals(self, period):
        now = date(2024, 1, 2)
        single = build_series(EVENTS, SOURCES, AllInGroup("G"), period, 3, now=now)
        doubled = build_series(EVENTS * 2, SOURCES, AllInGroup("G"), period, 3, now=now)

        for original, duplicated in zip(single, doubled):
            for name, value in original:
                assert duplicated[name] == value * 2

    def test_splitting_an_event_keeps_totals(self):
        split = [
            make_event("A", date(2024, 1, 1), 75),
            make_event("A", date(2024, 1, 1), 75),
            make_event("B", date(2024, 1, 2), 15),
            make_event("B", date(2024, 1, 2), 15),
        ]
        now = date(2024, 1, 2)
        assert build_series(split, SOURCES, AllInGroup("G"), Period.DAY, 2, now=now) == \
            build_series(EVENTS, SOURCES, AllInGroup("G"), Period.DAY, 2, now=now)

    def test_input_order_does_not_matter(self):
        now = date(2024, 1, 2)
        forward = build_series(EVENTS, SOURCES, AllInGroup("G"), Period.WEEK, 4, now=now)
        backward = build_series(
            list(reversed(EVENTS)), list(SOURCES), AllInGroup("G"), Period.WEEK, 4, now=now
        )
        assert forward == backward

    @pytest.mark.parametrize("period", list(Period))
    def test_exact_window_and_increasing_buckets(self, period):
        records = build_series(EVENTS, SOURCES, AggregateAll(), period, 7, now=date(2024, 1, 2))
        assert len(records) == 7
        starts = [r.start for r in records]
        assert starts == sorted(set(starts))

    def test_every_record_has_every_series_key(self):
        records = build_series(
            EVENTS, SOURCES, AllInGroup("G"), Period.DAY, window=12, now=date(2024, 1, 2)
        )
        for record in records:
            assert record.series_names == ["A", "B"]

    def test_group_series_sum_to_group_aggregate(self):
        events = EVENTS + [
            make_event("B", date(2023, 12, 28), 12),
            make_event("C", date(2024, 1, 2), 999),
        ]
        group_sources = [s for s in SOURCES if s.group_tag == "G"]
        now = date(2024, 1, 2)

        per_source = build_series(events, SOURCES, AllInGroup("G"), Period.WEEK, 3, now=now)
        aggregate = build_series(events, group_sources, AggregateAll(), Period.WEEK, 3, now=now)

        for split, combined in zip(per_source, aggregate):
            assert split.total == combined["Total"]

    def test_events_outside_window_are_ignored(self):
        events = EVENTS + [make_event("A", date(2023, 6, 1), 1000)]
        records = build_series(events, SOURCES, AllInGroup("G"), Period.DAY, 2, now=date(2024, 1, 2))
        assert sum(r.total for r in records) == 180

    def test_events_after_now_are_ignored(self):
        events = EVENTS + [make_event("A", date(2024, 1, 5), 1000)]
        records = build_series(events, SOURCES, AllInGroup("G"), Period.WEEK, 1, now=date(2024, 1, 2))
        assert records[0]["A"] == 150

    def test_events_for_unknown_sources_are_ignored(self):
        events = EVENTS + [make_event("ghost", date(2024, 1, 2), 5)]
        records = build_series(events, SOURCES[:2], AggregateAll(), Period.DAY, 1, now=date(2024, 1, 2))
        assert records[0]["Total"] == 30


class TestBuildSeriesEdgeCases:
    """Test empty selections and invalid arguments."""

    def test_empty_group_gives_labels_only(self):
        records = build_series(EVENTS, SOURCES, AllInGroup("Nobody"), Period.DAY, 3, now=date(2024, 1, 2))
        assert len(records) == 3
        assert all(r.values == () for r in records)
        assert records[-1].as_dict() == {"label": "Jan 2"}

    def test_unknown_single_source_gives_labels_only(self):
        records = build_series(EVENTS, SOURCES, SingleSource("missing"), Period.DAY, 2, now=date(2024, 1, 2))
        assert [r.values for r in records] == [(), ()]

    def test_aggregate_with_no_sources(self):
        records = build_series(EVENTS, [], AggregateAll(), Period.DAY, 2, now=date(2024, 1, 2))
        assert [r.values for r in records] == [(), ()]

    def test_no_events_zero_fills(self):
        records = build_series([], SOURCES, AllInGroup("G"), Period.MONTH, 2, now=date(2024, 1, 2))
        assert [r.as_dict() for r in records] == [
            {"label": "Dec 2023", "A": 0, "B": 0},
            {"label": "Jan 2024", "A": 0, "B": 0},
        ]

    def test_duplicate_display_names_stay_distinct(self):
        sources = [make_source("A", name="Key"), make_source("B", name="Key")]
        records = build_series(EVENTS, sources, AllInGroup("G"), Period.DAY, 1, now=date(2024, 1, 2))
        assert records[0].as_dict() == {"label": "Jan 2", "Key": 0, "Key (2)": 30}

    def test_string_period_is_rejected(self):
        with pytest.raises(ValueError):
            build_series(EVENTS, SOURCES, AggregateAll(), "day", 1, now=date(2024, 1, 2))

    def test_missing_series_lookup_raises_key_error(self):
        record = BucketRecord(label="Jan 1", start=date(2024, 1, 1), end=date(2024, 1, 1))
        with pytest.raises(KeyError):
            record["A"]


class TestCurrentPeriodTotal:
    """Test partial current-period totals."""

    def test_day_total(self):
        assert current_period_total(EVENTS, AggregateAll(), Period.DAY, now=date(2024, 1, 1)) == 150

    def test_week_total_so_far(self):
        assert current_period_total(EVENTS, AggregateAll(), Period.WEEK, now=date(2024, 1, 2)) == 180
        assert current_period_total(EVENTS, AggregateAll(), Period.WEEK, now=date(2024, 1, 1)) == 150

    def test_month_total_excludes_later_days(self):
        events = [
            make_event("A", date(2023, 12, 31), 7),
            make_event("A", date(2024, 1, 3), 10),
            make_event("B", date(2024, 1, 15), 5),
            make_event("B", date(2024, 1, 20), 100),
        ]
        assert current_period_total(events, AggregateAll(), Period.MONTH, now=date(2024, 1, 15)) == 15

    def test_single_source_needs_no_sources(self):
        assert current_period_total(EVENTS, SingleSource("B"), Period.WEEK, now=date(2024, 1, 2)) == 30

    def test_group_selection_uses_sources(self):
        events = EVENTS + [make_event("C", date(2024, 1, 2), 40)]
        now = date(2024, 1, 2)
        assert current_period_total(events, AllInGroup("H"), Period.WEEK, now=now, sources=SOURCES) == 40
        assert current_period_total(events, AllInGroup("H"), Period.WEEK, now=now) == 0

    def test_no_events(self):
        assert current_period_total([], AggregateAll(), Period.MONTH, now=date(2024, 1, 2)) == 0

    def test_string_period_is_rejected(self):
        with pytest.raises(ValueError):
            current_period_total(EVENTS, AggregateAll(), "week", now=date(2024, 1, 2))

    @pytest.mark.parametrize("period", list(Period))
    @pytest.mark.parametrize("selection", [
        AggregateAll(),
        AllInGroup("G"),
        AllInGroup("H"),
        SingleSource("A"),
        SingleSource("missing"),
    ])
    @pytest.mark.parametrize("now", [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 31)])
    def test_matches_last_bucket_of_series(self, period, selection, now):
        events = EVENTS + [
            make_event("C", date(2024, 1, 3), 40),
            make_event("A", date(2024, 1, 5), 500),
            make_event("B", date(2023, 12, 31), 8),
        ]
        last = build_series(events, SOURCES, selection, period, window=1, now=now)[-1]
        total = current_period_total(events, selection, period, now=now, sources=SOURCES)
        assert total == last.total


class TestFractionalAmounts:
    """Test that fractional sums do not depend on event order."""

    FRACTIONAL_EVENTS = [
        make_event("B", date(2024, 1, 1), 0.1),
        make_event("B", date(2024, 1, 2), 0.7),
        make_event("C", date(2024, 1, 3), 0.1),
        make_event("A", date(2024, 1, 4), 0.7),
        make_event("A", date(2024, 1, 4), 0.1),
        make_event("C", date(2024, 1, 5), 0.7),
        make_event("B", date(2024, 1, 6), 0.1),
        make_event("A", date(2024, 1, 7), 0.7),
    ]

    def test_aggregate_week_matches_total(self):
        events = [
            make_event("B", date(2024, 1, 1), 0.1),
            make_event("B", date(2024, 1, 2), 0.7),
            make_event("C", date(2024, 1, 3), 0.1),
        ]
        now = date(2024, 1, 7)
        last = build_series(events, SOURCES, AggregateAll(), Period.WEEK, 1, now=now)[-1]
        total = current_period_total(events, AggregateAll(), Period.WEEK, now=now)
        assert last["Total"] == total

    @pytest.mark.parametrize("period", list(Period))
    @pytest.mark.parametrize("selection", [
        AggregateAll(),
        AllInGroup("H"),
        SingleSource("A"),
        SingleSource("B"),
    ])
    def test_last_bucket_matches_total(self, period, selection):
        now = date(2024, 1, 7)
        last = build_series(
            self.FRACTIONAL_EVENTS, SOURCES, selection, period, window=2, now=now
        )[-1]
        total = current_period_total(
            self.FRACTIONAL_EVENTS, selection, period, now=now, sources=SOURCES
        )
        assert last.total == total

    def test_reversed_input_gives_identical_series(self):
        now = date(2024, 1, 7)
        forward = build_series(
            self.FRACTIONAL_EVENTS, SOURCES, AggregateAll(), Period.DAY, 7, now=now
        )
        backward = build_series(
            list(reversed(self.FRACTIONAL_EVENTS)), SOURCES, AggregateAll(), Period.DAY, 7, now=now
        )
        assert forward == backward
        assert forward[-1]["Total"] == 0.7
        assert forward[3]["Total"] == pytest.approx(0.8)
