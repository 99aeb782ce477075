"""
Event ingestion and the aggregate queries behind the stats endpoints.

All timestamps are naive UTC. Date ranges are half-open: start <= ts < end.
"""
import logging
from collections import Counter
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, distinct, func
from sqlmodel import Session, col, select

from zta.errors import ValidationError
from zta.models import AnalyticsEvent
from zta.utils import parse_iso, utcnow

logger = logging.getLogger("ZTA.Analytics")

PERIODS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "365d": timedelta(days=365),
}
BREAKDOWN_LIMIT = 10
EXPORT_LIMIT = 10000


class TimeBucket(str, Enum):
    hour = "hour"
    day = "day"
    week = "week"
    month = "month"


# Ingestion

def record_to_event(record: Dict[str, Any]) -> AnalyticsEvent:
    """Builds a table row from a canonical event record (see zta.core.create_record)."""
    if not record.get("site_id") or not record.get("identity_hash"):
        raise ValueError("Missing site_id or identity_hash")
    timestamp = record.get("timestamp")
    if isinstance(timestamp, str):
        timestamp = parse_iso(timestamp)
        if timestamp is None:
            raise ValueError("Invalid timestamp")
    return AnalyticsEvent(
        timestamp=timestamp or utcnow(),
        site_id=record["site_id"],
        identity_hash=record["identity_hash"],
        session_hash=record.get("session_hash") or record["identity_hash"][:32],
        event_type=record.get("event_type", "pageview"),
        path=record.get("path") or "/",
        referrer_domain=record.get("referrer_domain"),
        traffic_source=record.get("traffic_source") or "direct",
        utm_source=record.get("utm_source"),
        utm_medium=record.get("utm_medium"),
        utm_campaign=record.get("utm_campaign"),
        payload=record.get("payload") or {},
        context_device=record.get("context_device", "desktop"),
        context_browser=record.get("context_browser", "other"),
        context_os=record.get("context_os", "other"),
        context_country=record.get("context_country", "unknown"),
        context_region=record.get("context_region", "unknown"),
        is_bounce=bool(record.get("is_bounce")),
        duration=int(record.get("duration") or 0),
    )


def ingest_events(session: Session, records: Iterable[Dict[str, Any]]) -> int:
    """Inserts a batch of records in one transaction."""
    events = [record_to_event(r) for r in records]
    if not events:
        return 0
    session.add_all(events)
    session.commit()
    return len(events)


def delete_site_events(session: Session, site_id: str) -> int:
    result = session.exec(delete(AnalyticsEvent).where(AnalyticsEvent.site_id == site_id))
    session.commit()
    logger.info(f"Deleted {result.rowcount} events for site {site_id}")
    return result.rowcount


# Date ranges and bucketing

def resolve_date_range(
    period: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Either explicit YYYY-MM-DD dates (end inclusive) or a named period
    ending now. Defaults to the last 7 days.
    """
    now = now or utcnow()
    if start_date or end_date:
        try:
            start = datetime.combine(date.fromisoformat(start_date), datetime.min.time()) if start_date else None
            end = datetime.combine(date.fromisoformat(end_date), datetime.min.time()) + timedelta(days=1) if end_date else now
        except ValueError:
            raise ValidationError("Invalid date format. Use YYYY-MM-DD")
        if start is None:
            start = end - PERIODS["7d"]
        if start >= end:
            raise ValidationError("startDate must be before endDate")
        return start, end

    period = period or "7d"
    if period not in PERIODS:
        raise ValidationError(f"Invalid period. Use one of: {', '.join(PERIODS)}")
    return now - PERIODS[period], now


def pick_time_bucket(start: datetime, end: datetime) -> TimeBucket:
    time_delta = end - start
    if time_delta <= timedelta(days=2):
        return TimeBucket.hour
    elif time_delta <= timedelta(days=31):
        return TimeBucket.day
    elif time_delta <= timedelta(days=90):
        return TimeBucket.week
    return TimeBucket.month


def bucket_start(ts: datetime, bucket: TimeBucket) -> datetime:
    if bucket == TimeBucket.hour:
        return ts.replace(minute=0, second=0, microsecond=0)
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if bucket == TimeBucket.day:
        return day
    if bucket == TimeBucket.week:
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def next_bucket(ts: datetime, bucket: TimeBucket) -> datetime:
    if bucket == TimeBucket.hour:
        return ts + timedelta(hours=1)
    if bucket == TimeBucket.day:
        return ts + timedelta(days=1)
    if bucket == TimeBucket.week:
        return ts + timedelta(weeks=1)
    if ts.month == 12:
        return ts.replace(year=ts.year + 1, month=1)
    return ts.replace(month=ts.month + 1)


def _bucket_expression(session: Session, bucket: TimeBucket):
    # Whitelisted units only, never user text
    ts = AnalyticsEvent.timestamp
    if session.get_bind().dialect.name == "postgresql":
        return func.date_trunc(bucket.value, ts)
    if bucket == TimeBucket.hour:
        return func.strftime("%Y-%m-%dT%H:00:00", ts)
    if bucket == TimeBucket.day:
        return func.date(ts)
    if bucket == TimeBucket.week:
        return func.date(ts, "weekday 0", "-6 days")
    return func.strftime("%Y-%m-01", ts)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    return datetime.fromisoformat(str(value))


# Queries

def _base_filters(site_id: str, start: datetime, end: datetime) -> list:
    return [
        AnalyticsEvent.site_id == site_id,
        AnalyticsEvent.timestamp >= start,
        AnalyticsEvent.timestamp < end,
    ]


def get_summary(session: Session, site_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
    pageview_filters = _base_filters(site_id, start, end) + [AnalyticsEvent.event_type == "pageview"]

    pageviews, visitors, sessions = session.exec(
        select(
            func.count(),
            func.count(distinct(AnalyticsEvent.identity_hash)),
            func.count(distinct(AnalyticsEvent.session_hash)),
        ).where(*pageview_filters)
    ).one()

    per_session = (
        select(AnalyticsEvent.session_hash, func.count().label("views"))
        .where(*pageview_filters)
        .group_by(AnalyticsEvent.session_hash)
        .subquery()
    )
    single_page_sessions = session.exec(
        select(func.count()).select_from(per_session).where(per_session.c.views == 1)
    ).one()

    avg_duration = session.exec(
        select(func.avg(AnalyticsEvent.duration)).where(
            *_base_filters(site_id, start, end),
            AnalyticsEvent.event_type == "engagement",
            AnalyticsEvent.duration > 0,
        )
    ).one()

    return {
        "pageviews": pageviews,
        "unique_visitors": visitors,
        "sessions": sessions,
        "bounce_rate": round(single_page_sessions / sessions * 100, 1) if sessions else 0,
        "avg_duration": int(round(avg_duration or 0)),
    }


def get_timeseries(
    session: Session,
    site_id: str,
    start: datetime,
    end: datetime,
    bucket: TimeBucket,
) -> List[Dict[str, Any]]:
    """Pageviews and visitors per bucket, with empty buckets filled in."""
    bucket_col = _bucket_expression(session, bucket).label("bucket")
    rows = session.exec(
        select(
            bucket_col,
            func.count(),
            func.count(distinct(AnalyticsEvent.identity_hash)),
        )
        .where(*_base_filters(site_id, start, end), AnalyticsEvent.event_type == "pageview")
        .group_by(bucket_col)
    ).all()
    counts = {_as_datetime(r[0]): (r[1], r[2]) for r in rows}

    points = []
    current = bucket_start(start, bucket)
    while current < end:
        pageviews, visitors = counts.get(current, (0, 0))
        points.append({"bucket": current.isoformat(), "pageviews": pageviews, "visitors": visitors})
        current = next_bucket(current, bucket)
    return points


def get_breakdown(
    session: Session,
    site_id: str,
    start: datetime,
    end: datetime,
    column,
    limit: int = BREAKDOWN_LIMIT,
    exclude_null: bool = True,
) -> List[Dict[str, Any]]:
    filters = _base_filters(site_id, start, end) + [AnalyticsEvent.event_type == "pageview"]
    if exclude_null:
        filters.append(col(column).is_not(None))
    rows = session.exec(
        select(column, func.count().label("pageviews"), func.count(distinct(AnalyticsEvent.identity_hash)))
        .where(*filters)
        .group_by(column)
        .order_by(func.count().desc())
        .limit(limit)
    ).all()
    return [{"value": r[0], "pageviews": r[1], "visitors": r[2]} for r in rows]


def get_custom_events(session: Session, site_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    payloads = session.exec(
        select(AnalyticsEvent.payload)
        .where(*_base_filters(site_id, start, end), AnalyticsEvent.event_type == "event")
        .limit(EXPORT_LIMIT)
    ).all()
    counter: Counter = Counter()
    for payload in payloads:
        payload = payload or {}
        counter[(payload.get("category"), payload.get("action"))] += 1
    return [
        {"category": category, "action": action, "count": count}
        for (category, action), count in counter.most_common(BREAKDOWN_LIMIT * 5)
    ]


def count_custom_events(session: Session, site_id: str, start: datetime, end: datetime) -> int:
    return session.exec(
        select(func.count()).where(*_base_filters(site_id, start, end), AnalyticsEvent.event_type == "event")
    ).one()


def summarize_imported(days: List[Dict[str, Any]]) -> Dict[str, Any]:
    totals = {"days": len(days), "pageviews": 0, "visitors": 0, "sessions": 0}
    for day in days:
        for field in ("pageviews", "visitors", "sessions"):
            value = day.get(field)
            if isinstance(value, (int, float)):
                totals[field] += value
    return totals


def get_stats(
    session: Session,
    site_id: str,
    start: datetime,
    end: datetime,
    interval: Optional[TimeBucket] = None,
) -> Dict[str, Any]:
    """The full dashboard payload for one site and date range."""
    bucket = interval or pick_time_bucket(start, end)

    def breakdown(column, key):
        return [
            {key: r["value"], "pageviews": r["pageviews"], "visitors": r["visitors"]}
            for r in get_breakdown(session, site_id, start, end, column)
        ]

    daily = [
        {"date": p["bucket"][:10], "pageviews": p["pageviews"], "visitors": p["visitors"]}
        for p in get_timeseries(session, site_id, start, end, TimeBucket.day)
    ]

    return {
        "summary": get_summary(session, site_id, start, end),
        "daily": daily,
        "timeseries": {"interval": bucket.value, "points": get_timeseries(session, site_id, start, end, bucket)},
        "pages": breakdown(AnalyticsEvent.path, "path"),
        "referrers": breakdown(AnalyticsEvent.referrer_domain, "domain"),
        "traffic_sources": breakdown(AnalyticsEvent.traffic_source, "source"),
        "devices": breakdown(AnalyticsEvent.context_device, "device"),
        "browsers": breakdown(AnalyticsEvent.context_browser, "browser"),
        "os": breakdown(AnalyticsEvent.context_os, "os"),
        "countries": breakdown(AnalyticsEvent.context_country, "country"),
        "campaigns": breakdown(AnalyticsEvent.utm_campaign, "campaign"),
        "events": get_custom_events(session, site_id, start, end),
        "period": {"start": start.isoformat(), "end": end.isoformat()},
    }


def get_realtime(session: Session, site_id: str, window_minutes: int = 5) -> Dict[str, Any]:
    now = utcnow()
    since = now - timedelta(minutes=window_minutes)
    recent = [
        AnalyticsEvent.site_id == site_id,
        AnalyticsEvent.timestamp >= since,
    ]

    active_visitors = session.exec(
        select(func.count(distinct(AnalyticsEvent.identity_hash))).where(
            *recent, col(AnalyticsEvent.event_type).in_(["pageview", "heartbeat"])
        )
    ).one()

    pageviews = session.exec(
        select(AnalyticsEvent)
        .where(*recent, AnalyticsEvent.event_type == "pageview")
        .order_by(col(AnalyticsEvent.timestamp).desc())
    ).all()

    page_breakdown = Counter(e.path for e in pageviews)
    sources = Counter(e.traffic_source for e in pageviews)

    return {
        "activeVisitors": active_visitors,
        "pageviewsLast5Min": len(pageviews),
        "pageBreakdown": [{"path": p, "count": c} for p, c in page_breakdown.most_common(BREAKDOWN_LIMIT)],
        "recentPageviews": [
            {
                "path": e.path,
                "timestamp": e.timestamp.isoformat(),
                "referrer": e.referrer_domain,
                "device": e.context_device,
                "country": e.context_country,
            }
            for e in pageviews[:10]
        ],
        "trafficSources": [{"source": s, "count": c} for s, c in sources.most_common()],
        "timestamp": now.isoformat(),
    }


EXPORT_COLUMNS = {
    "pageviews": ["timestamp", "path", "referrer", "source", "device", "browser", "os", "country"],
    "events": ["timestamp", "path", "category", "action", "label", "value"],
    "summary": ["date", "pageviews", "visitors"],
}


def export_rows(session: Session, site_id: str, start: datetime, end: datetime, export_type: str) -> List[Dict[str, Any]]:
    if export_type == "summary":
        return [
            {"date": p["bucket"][:10], "pageviews": p["pageviews"], "visitors": p["visitors"]}
            for p in get_timeseries(session, site_id, start, end, TimeBucket.day)
        ]

    event_type = "pageview" if export_type == "pageviews" else "event"
    events = session.exec(
        select(AnalyticsEvent)
        .where(*_base_filters(site_id, start, end), AnalyticsEvent.event_type == event_type)
        .order_by(col(AnalyticsEvent.timestamp).desc())
        .limit(EXPORT_LIMIT)
    ).all()

    if export_type == "pageviews":
        return [
            {
                "timestamp": e.timestamp.isoformat(),
                "path": e.path,
                "referrer": e.referrer_domain or "",
                "source": e.traffic_source,
                "device": e.context_device,
                "browser": e.context_browser,
                "os": e.context_os,
                "country": e.context_country,
            }
            for e in events
        ]
    return [
        {
            "timestamp": e.timestamp.isoformat(),
            "path": e.path,
            "category": (e.payload or {}).get("category"),
            "action": (e.payload or {}).get("action"),
            "label": (e.payload or {}).get("label"),
            "value": (e.payload or {}).get("value"),
        }
        for e in events
    ]
