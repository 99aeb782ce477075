import logging
from functools import partial
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlmodel import Session

from zta.api.security import SiteAccess, get_site_access, load_rule
from zta.db import get_session
from zta.errors import ValidationError
from zta.models import GoalCreate, GoalUpdate, loose_dict
from zta.reports import GOAL_METRICS, GOAL_PERIODS, evaluate_goals
from zta.storage import RuleStore, get_rules
from zta.webhooks import dispatch_event

router = APIRouter(
    prefix="/api/goals",
    tags=["Goals"]
)

logger = logging.getLogger("ZTA.Goals")

COMPARISONS = ("gte", "lte")
DEFAULT_TARGET = 1000


def parse_target(value: Any) -> int:
    try:
        return max(1, int(float(value)))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_TARGET


def check_choices(metric: Optional[str], period: Optional[str], comparison: Optional[str]):
    if metric is not None and metric not in GOAL_METRICS:
        raise ValidationError(f"Invalid metric. Use one of: {', '.join(GOAL_METRICS)}")
    if period is not None and period not in GOAL_PERIODS:
        raise ValidationError(f"Invalid period. Use one of: {', '.join(GOAL_PERIODS)}")
    if comparison is not None and comparison not in COMPARISONS:
        raise ValidationError(f"Invalid comparison. Use one of: {', '.join(COMPARISONS)}")


@router.get("")
def list_goals(
    background_tasks: BackgroundTasks,
    siteId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    session: Session = Depends(get_session),
    rules: RuleStore = Depends(get_rules),
):
    """
    Goals of a site with their progress in the current period.
    """
    site = access.read(siteId)
    return {"goals": evaluate_goals(session, rules, site["id"], notify=partial(background_tasks.add_task, dispatch_event))}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_goal(
    body: GoalCreate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    site = access.write(body.siteId)
    if not body.name or not body.name.strip():
        raise ValidationError("Goal name required")
    check_choices(body.metric, body.period, body.comparison)

    goal = rules.create("goal", site["id"], access.auth.id, {
        "name": body.name.strip(),
        "metric": body.metric or "pageviews",
        "target": parse_target(body.target),
        "period": body.period or "daily",
        "comparison": body.comparison or "gte",
        "notifyOnComplete": body.notifyOnComplete,
    })
    return {"success": True, "goal": goal}


@router.patch("")
def update_goal(
    body: GoalUpdate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    goal = load_rule(rules, access, "goal", body.goalId)
    check_choices(body.metric, body.period, body.comparison)

    updates = loose_dict(body)
    if "target" in updates:
        updates["target"] = parse_target(updates["target"])
    if updates.get("name") is not None and not updates["name"].strip():
        raise ValidationError("Goal name required")

    goal = rules.update("goal", goal, updates, ("name", "metric", "target", "period", "comparison", "notifyOnComplete"))
    return {"success": True, "goal": goal}


@router.delete("")
def delete_goal(
    goalId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    goal = load_rule(rules, access, "goal", goalId)
    rules.delete("goal", goal)
    return {"success": True}
