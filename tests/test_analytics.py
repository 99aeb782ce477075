from datetime import datetime, timedelta

import pytest

from zta import analytics
from zta.analytics import TimeBucket
from zta.errors import ValidationError

NOW = datetime(2024, 3, 15, 12, 30)


def make_record(ts, identity="a" * 64, session="s1", event_type="pageview", path="/", **extra):
    record = {
        "timestamp": ts.isoformat(),
        "site_id": "site_1",
        "identity_hash": identity,
        "session_hash": session,
        "event_type": event_type,
        "path": path,
        "traffic_source": "direct",
    }
    record.update(extra)
    return record


def test_resolve_named_period():
    start, end = analytics.resolve_date_range("24h", now=NOW)
    assert end == NOW
    assert start == NOW - timedelta(hours=24)


def test_resolve_defaults_to_seven_days():
    start, end = analytics.resolve_date_range(now=NOW)
    assert end - start == timedelta(days=7)


def test_resolve_explicit_dates_end_inclusive():
    start, end = analytics.resolve_date_range(start_date="2024-03-01", end_date="2024-03-10")
    assert start == datetime(2024, 3, 1)
    assert end == datetime(2024, 3, 11)


def test_resolve_rejects_bad_input():
    with pytest.raises(ValidationError):
        analytics.resolve_date_range("2y")
    with pytest.raises(ValidationError):
        analytics.resolve_date_range(start_date="03/01/2024")
    with pytest.raises(ValidationError):
        analytics.resolve_date_range(start_date="2024-03-10", end_date="2024-03-01")


def test_pick_time_bucket():
    assert analytics.pick_time_bucket(NOW - timedelta(days=1), NOW) == TimeBucket.hour
    assert analytics.pick_time_bucket(NOW - timedelta(days=2), NOW) == TimeBucket.hour
    assert analytics.pick_time_bucket(NOW - timedelta(days=30), NOW) == TimeBucket.day
    assert analytics.pick_time_bucket(NOW - timedelta(days=90), NOW) == TimeBucket.week
    assert analytics.pick_time_bucket(NOW - timedelta(days=365), NOW) == TimeBucket.month


def test_bucket_start_and_next():
    ts = datetime(2024, 3, 14, 9, 45)  # Thursday
    assert analytics.bucket_start(ts, TimeBucket.hour) == datetime(2024, 3, 14, 9)
    assert analytics.bucket_start(ts, TimeBucket.day) == datetime(2024, 3, 14)
    assert analytics.bucket_start(ts, TimeBucket.week) == datetime(2024, 3, 11)
    assert analytics.bucket_start(ts, TimeBucket.month) == datetime(2024, 3, 1)
    assert analytics.next_bucket(datetime(2024, 12, 1), TimeBucket.month) == datetime(2025, 1, 1)


def test_record_to_event_requires_identity():
    with pytest.raises(ValueError):
        analytics.record_to_event({"site_id": "site_1"})
    with pytest.raises(ValueError):
        analytics.record_to_event({"site_id": "site_1", "identity_hash": "x", "timestamp": "not-a-date"})


def test_summary_counts_and_bounce_rate(session):
    analytics.ingest_events(session, [
        make_record(NOW - timedelta(hours=3), identity="a" * 64, session="s1", path="/"),
        make_record(NOW - timedelta(hours=3), identity="a" * 64, session="s1", path="/pricing"),
        make_record(NOW - timedelta(hours=2), identity="b" * 64, session="s2", path="/"),
        make_record(NOW - timedelta(hours=1), identity="b" * 64, session="s2", event_type="engagement", duration=40),
        make_record(NOW - timedelta(hours=1), identity="c" * 64, session="s3", event_type="engagement", duration=20),
        make_record(NOW - timedelta(days=30), identity="d" * 64, session="s4"),
    ])

    summary = analytics.get_summary(session, "site_1", NOW - timedelta(days=1), NOW)
    assert summary["pageviews"] == 3
    assert summary["unique_visitors"] == 2
    assert summary["sessions"] == 2
    assert summary["bounce_rate"] == 50.0
    assert summary["avg_duration"] == 30


def test_summary_empty(session):
    summary = analytics.get_summary(session, "site_1", NOW - timedelta(days=1), NOW)
    assert summary == {"pageviews": 0, "unique_visitors": 0, "sessions": 0, "bounce_rate": 0, "avg_duration": 0}


def test_timeseries_fills_empty_days(session):
    analytics.ingest_events(session, [
        make_record(datetime(2024, 3, 2, 10), identity="a" * 64),
        make_record(datetime(2024, 3, 2, 11), identity="b" * 64),
        make_record(datetime(2024, 3, 4, 9), identity="a" * 64),
    ])
    points = analytics.get_timeseries(session, "site_1", datetime(2024, 3, 1), datetime(2024, 3, 5), TimeBucket.day)
    assert [p["bucket"][:10] for p in points] == ["2024-03-01", "2024-03-02", "2024-03-03", "2024-03-04"]
    assert [p["pageviews"] for p in points] == [0, 2, 0, 1]
    assert [p["visitors"] for p in points] == [0, 2, 0, 1]


def test_timeseries_hourly(session):
    analytics.ingest_events(session, [
        make_record(datetime(2024, 3, 2, 10, 5)),
        make_record(datetime(2024, 3, 2, 10, 55)),
    ])
    points = analytics.get_timeseries(session, "site_1", datetime(2024, 3, 2, 9), datetime(2024, 3, 2, 12), TimeBucket.hour)
    assert [p["pageviews"] for p in points] == [0, 2, 0]


def test_stats_breakdowns(session):
    analytics.ingest_events(session, [
        make_record(NOW - timedelta(hours=1), identity="a" * 64, path="/", referrer_domain="google.com", traffic_source="search"),
        make_record(NOW - timedelta(hours=1), identity="b" * 64, path="/", referrer_domain="google.com", traffic_source="search"),
        make_record(NOW - timedelta(hours=1), identity="c" * 64, path="/docs"),
        make_record(NOW - timedelta(hours=1), identity="c" * 64, event_type="event",
                    payload={"category": "cta", "action": "click"}),
    ])
    stats = analytics.get_stats(session, "site_1", NOW - timedelta(days=1), NOW)
    assert stats["pages"][0] == {"path": "/", "pageviews": 2, "visitors": 2}
    assert stats["referrers"] == [{"domain": "google.com", "pageviews": 2, "visitors": 2}]
    assert {"source": "search", "pageviews": 2, "visitors": 2} in stats["traffic_sources"]
    assert stats["events"] == [{"category": "cta", "action": "click", "count": 1}]
    assert stats["timeseries"]["interval"] == "hour"


def test_delete_site_events(session):
    analytics.ingest_events(session, [make_record(NOW), make_record(NOW - timedelta(minutes=1))])
    assert analytics.delete_site_events(session, "site_1") == 2
    assert analytics.get_summary(session, "site_1", NOW - timedelta(days=1), NOW + timedelta(minutes=1))["pageviews"] == 0
