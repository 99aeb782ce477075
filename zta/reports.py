"""
Goal progress, funnel conversion and traffic alert evaluation.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, col, select

from zta.analytics import count_custom_events, get_summary
from zta.models import AnalyticsEvent
from zta.storage import RuleStore
from zta.utils import parse_iso, utcnow
from zta.webhooks import dispatch_event

logger = logging.getLogger("ZTA.Reports")

GOAL_METRICS = ("pageviews", "visitors", "sessions", "bounce_rate", "avg_duration", "events")
GOAL_PERIODS = ("daily", "weekly", "monthly")
ALERT_TYPES = ("traffic_spike", "traffic_drop", "anomaly", "comparison")
FUNNEL_STEP_TYPES = ("page", "event")
MAX_FUNNEL_STEPS = 10
FUNNEL_EVENT_LIMIT = 50000


# Goals

def goal_date_range(period: str, now: Optional[datetime] = None) -> Dict[str, datetime]:
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "weekly":
        start = today - timedelta(days=today.weekday())
    elif period == "monthly":
        start = today.replace(day=1)
    else:
        start = today
    return {"start": start, "end": now}


def goal_value(session: Session, site_id: str, metric: str, start: datetime, end: datetime) -> float:
    if metric == "events":
        return count_custom_events(session, site_id, start, end)
    summary = get_summary(session, site_id, start, end)
    key = "unique_visitors" if metric == "visitors" else metric
    return summary.get(key, 0)


def goal_progress(goal: Dict[str, Any], current_value: float) -> Dict[str, Any]:
    target = goal.get("target") or 0
    progress = min(100, round(current_value / target * 100)) if target > 0 else 0
    if goal.get("comparison", "gte") == "gte":
        is_complete = current_value >= target
    else:
        is_complete = current_value <= target
    return {"currentValue": current_value, "progress": progress, "isComplete": is_complete}


def evaluate_goals(
    session: Session,
    rules: RuleStore,
    site_id: str,
    notify: Callable[..., Any] = dispatch_event,
) -> List[Dict[str, Any]]:
    """
    Attaches live progress to every goal of the site. The first completion in
    a period fires the goal_completed webhook when the goal asks for it.
    `notify` takes the dispatch_event arguments; routers pass one that
    schedules the delivery as a background task.
    """
    results = []
    for goal in rules.list("goal", site_id):
        date_range = goal_date_range(goal.get("period", "daily"))
        current_value = goal_value(session, site_id, goal.get("metric", "pageviews"), date_range["start"], date_range["end"])
        progress = goal_progress(goal, current_value)

        period_key = date_range["start"].date().isoformat()
        if progress["isComplete"] and goal.get("completedPeriod") != period_key:
            goal["completedPeriod"] = period_key
            goal["lastCompletedAt"] = utcnow().isoformat()
            rules.save("goal", goal)
            if goal.get("notifyOnComplete"):
                notify(site_id, "goal_completed", {
                    "goalId": goal["id"],
                    "name": goal.get("name"),
                    "metric": goal.get("metric"),
                    "target": goal.get("target"),
                    "value": current_value,
                }, rules)

        results.append({
            **goal,
            **progress,
            "dateRange": {
                "startDate": date_range["start"].date().isoformat(),
                "endDate": date_range["end"].date().isoformat(),
            },
        })
    return results


# Funnels

def _step_matches(step: Dict[str, Any], event_type: str, path: str, payload: Dict[str, Any]) -> bool:
    value = step.get("value") or ""
    if step.get("type") == "event":
        if event_type != "event":
            return False
        action = payload.get("action")
        category = payload.get("category")
        return value in (action, f"{category}:{action}")
    if event_type != "pageview":
        return False
    if value.endswith("*"):
        return path.startswith(value[:-1])
    return path == value


def funnel_report(
    session: Session,
    site_id: str,
    steps: List[Dict[str, Any]],
    start: datetime,
    end: datetime,
) -> Dict[str, Any]:
    """
    Counts sessions that complete each step in order. A session only
    reaches step N after it has matched steps 1..N-1 earlier in time.
    """
    rows = session.exec(
        select(AnalyticsEvent.session_hash, AnalyticsEvent.event_type, AnalyticsEvent.path, AnalyticsEvent.payload)
        .where(
            AnalyticsEvent.site_id == site_id,
            AnalyticsEvent.timestamp >= start,
            AnalyticsEvent.timestamp < end,
            col(AnalyticsEvent.event_type).in_(["pageview", "event"]),
        )
        .order_by(AnalyticsEvent.session_hash, AnalyticsEvent.timestamp)
        .limit(FUNNEL_EVENT_LIMIT)
    ).all()

    progress: Dict[str, int] = defaultdict(int)
    for session_hash, event_type, path, payload in rows:
        reached = progress[session_hash]
        if reached < len(steps) and _step_matches(steps[reached], event_type, path, payload or {}):
            progress[session_hash] = reached + 1

    counts = [sum(1 for reached in progress.values() if reached > i) for i in range(len(steps))]
    first = counts[0] if counts else 0

    report_steps = []
    for i, step in enumerate(steps):
        previous = counts[i - 1] if i > 0 else counts[i]
        report_steps.append({
            **step,
            "visitors": counts[i],
            "conversionRate": round(counts[i] / first * 100, 1) if first else 0,
            "dropoff": round((previous - counts[i]) / previous * 100, 1) if previous and i > 0 else 0,
        })

    return {
        "steps": report_steps,
        "totalConversion": round(counts[-1] / first * 100, 1) if first and counts else 0,
        "dateRange": {"startDate": start.date().isoformat(), "endDate": (end - timedelta(seconds=1)).date().isoformat()},
    }


# Alerts

def _pageviews_between(session: Session, site_id: str, start: datetime, end: datetime) -> int:
    return session.exec(
        select(func.count()).where(
            AnalyticsEvent.site_id == site_id,
            AnalyticsEvent.event_type == "pageview",
            AnalyticsEvent.timestamp >= start,
            AnalyticsEvent.timestamp < end,
        )
    ).one()


def traffic_baseline(session: Session, site_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Average pageviews per hour over the previous seven days."""
    now = now or utcnow()
    week_ago = now - timedelta(days=7)
    total = _pageviews_between(session, site_id, week_ago, now)
    last_hour = _pageviews_between(session, site_id, now - timedelta(hours=1), now)
    return {
        "hourlyAverage": round(total / (7 * 24), 2),
        "dailyAverage": round(total / 7, 1),
        "lastHour": last_hour,
        "sampleDays": 7,
    }


def evaluate_alert(session: Session, alert: Dict[str, Any], baseline: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    window = timedelta(minutes=alert.get("timeWindow", 60))
    threshold = alert.get("threshold", 200)
    current = _pageviews_between(session, alert["siteId"], now - window, now)

    if alert.get("type") == "comparison":
        week_ago = now - timedelta(days=7)
        expected = _pageviews_between(session, alert["siteId"], week_ago - window, week_ago)
    else:
        expected = baseline["hourlyAverage"] * window.total_seconds() / 3600

    ratio = round(current / expected * 100, 1) if expected else None
    spike = expected >= 1 and current >= expected * threshold / 100
    drop = expected >= 1 and current <= expected * 100 / threshold

    alert_type = alert.get("type", "traffic_spike")
    if alert_type == "traffic_drop":
        triggered = drop
    elif alert_type == "anomaly":
        triggered = spike or drop
    else:
        triggered = spike

    return {
        "currentValue": current,
        "expectedValue": round(expected, 2),
        "ratio": ratio,
        "isTriggered": triggered,
    }


def in_cooldown(alert: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    last = parse_iso(alert.get("lastTriggeredAt"))
    if not last:
        return False
    return (now or utcnow()) - last < timedelta(minutes=alert.get("cooldown", 60))


def evaluate_alerts(
    session: Session,
    rules: RuleStore,
    site_id: str,
    notify: Callable[..., Any] = dispatch_event,
) -> Dict[str, Any]:
    """
    Evaluates every alert of the site. Triggered alerts outside their
    cooldown are stamped and notify their webhooks.
    """
    baseline = traffic_baseline(session, site_id)
    results = []
    for alert in rules.list("alert", site_id):
        evaluation = evaluate_alert(session, alert, baseline)
        if evaluation["isTriggered"] and alert.get("isActive", True) and not in_cooldown(alert):
            alert["lastTriggeredAt"] = utcnow().isoformat()
            alert["triggerCount"] = alert.get("triggerCount", 0) + 1
            rules.save("alert", alert)
            logger.info(f"Alert {alert['id']} triggered for site {site_id}")
            if alert.get("notifyWebhook"):
                notify(site_id, "traffic_spike", {
                    "alertId": alert["id"],
                    "name": alert.get("name"),
                    "type": alert.get("type"),
                    **evaluation,
                }, rules)
            if alert.get("notifyEmail"):
                logger.info(f"Email notification queued for alert {alert['id']}")
        results.append({**alert, **evaluation})
    return {"alerts": results, "baseline": baseline}
