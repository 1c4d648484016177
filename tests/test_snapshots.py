"""Tests for daily snapshot sampling."""

from datetime import date

import pytest

from pnl_tracker.services.snapshots import SnapshotTracker


def test_first_sample_against_zero_start() -> None:
    """With no starting balance and no history the percentage is 0, not inf/NaN."""
    tracker = SnapshotTracker()
    snap = tracker.sample(1500.0, date(2024, 1, 1))
    assert snap["date"] == "2024-01-01"
    assert snap["daily_change"] == pytest.approx(1500.0)
    assert snap["daily_change_percentage"] == 0.0


def test_first_sample_against_start_balance() -> None:
    tracker = SnapshotTracker(start_balance=1000.0)
    snap = tracker.sample(1100.0, date(2024, 1, 1))
    assert snap["daily_change"] == pytest.approx(100.0)
    assert snap["daily_change_percentage"] == pytest.approx(10.0)


def test_same_day_overwrites() -> None:
    tracker = SnapshotTracker(start_balance=1000.0)
    tracker.sample(1100.0, date(2024, 1, 1))
    tracker.sample(1200.0, date(2024, 1, 1))
    assert len(tracker) == 1
    only = tracker.history[0]
    assert only["portfolio_value"] == pytest.approx(1200.0)
    # Still measured against the start balance, not the overwritten 1100
    assert only["daily_change"] == pytest.approx(200.0)


def test_same_day_resample_uses_entry_before_today() -> None:
    tracker = SnapshotTracker()
    tracker.sample(1000.0, date(2024, 1, 1))
    tracker.sample(1100.0, date(2024, 1, 2))
    snap = tracker.sample(1210.0, date(2024, 1, 2))
    assert len(tracker) == 2
    assert snap["daily_change"] == pytest.approx(210.0)
    assert snap["daily_change_percentage"] == pytest.approx(21.0)


def test_new_day_uses_last_entry() -> None:
    tracker = SnapshotTracker(start_balance=500.0)
    tracker.sample(1000.0, date(2024, 1, 1))
    snap = tracker.sample(900.0, date(2024, 1, 3))
    assert snap["daily_change"] == pytest.approx(-100.0)
    assert snap["daily_change_percentage"] == pytest.approx(-10.0)
    assert [s["date"] for s in tracker.history] == ["2024-01-01", "2024-01-03"]


def test_no_truncation_but_recent_limits() -> None:
    tracker = SnapshotTracker()
    for day in range(1, 32):
        tracker.sample(float(day), date(2024, 1, day))
    tracker.sample(99.0, date(2024, 2, 1))
    assert len(tracker) == 32
    recent = tracker.recent()
    assert len(recent) == 30
    assert recent[-1]["date"] == "2024-02-01"
    assert tracker.recent(0) == []


def test_history_is_a_copy() -> None:
    tracker = SnapshotTracker()
    tracker.sample(1.0, "2024-01-01")
    tracker.history[0]["portfolio_value"] = 999.0
    assert tracker.latest()["portfolio_value"] == 1.0


def test_today_lookup() -> None:
    tracker = SnapshotTracker()
    assert tracker.today(date(2024, 1, 1)) is None
    tracker.sample(5.0, date(2024, 1, 1))
    assert tracker.today(date(2024, 1, 1))["portfolio_value"] == 5.0


def test_from_list_reads_legacy_and_skips_malformed() -> None:
    records = [
        {"date": "2024-01-01", "portfolioValue": 10.0, "dailyChange": 1.0, "dailyChangePercentage": 11.1},
        {"portfolio_value": 3.0},
        {"date": "2024-01-02", "portfolio_value": "oops"},
    ]
    tracker = SnapshotTracker.from_list(records, start_balance=2.0)
    assert len(tracker) == 1
    assert tracker.start_balance == 2.0
    assert tracker.to_list()[0]["portfolio_value"] == 10.0


def test_from_list_normalizes_legacy_date_strings() -> None:
    records = [
        {"date": "Mon Jan 01 2024", "portfolioValue": 10.0, "dailyChange": 0.0, "dailyChangePercentage": 0.0},
        {"date": "2024-01-02T08:30:00", "portfolio_value": 12.0, "daily_change": 2.0,
         "daily_change_percentage": 20.0},
    ]
    tracker = SnapshotTracker.from_list(records)
    assert [s["date"] for s in tracker.history] == ["2024-01-01", "2024-01-02"]
    tracker.sample(15.0, date(2024, 1, 2))
    assert len(tracker) == 2
    assert tracker.latest()["daily_change"] == pytest.approx(5.0)
