import logging
from functools import partial
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlmodel import Session

from zta.api.security import SiteAccess, get_site_access, load_rule
from zta.db import get_session
from zta.errors import ValidationError
from zta.models import AlertCreate, AlertUpdate
from zta.reports import ALERT_TYPES, evaluate_alerts
from zta.storage import RuleStore, get_rules
from zta.webhooks import dispatch_event

router = APIRouter(
    prefix="/api/alerts",
    tags=["Alerts"]
)

logger = logging.getLogger("ZTA.Alerts")

# (minimum, maximum, default)
THRESHOLD_RANGE = (50, 1000, 200)
MINUTES_RANGE = (15, 1440, 60)


def clamp(value: Any, bounds: tuple) -> int:
    low, high, default = bounds
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(low, min(high, number))


def check_type(alert_type: Optional[str]):
    if alert_type is not None and alert_type not in ALERT_TYPES:
        raise ValidationError(f"Invalid alert type. Use one of: {', '.join(ALERT_TYPES)}")


@router.get("")
def list_alerts(
    background_tasks: BackgroundTasks,
    siteId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    session: Session = Depends(get_session),
    rules: RuleStore = Depends(get_rules),
):
    """
    Alerts of a site evaluated against current traffic, plus the
    traffic baseline they were compared with.
    """
    site = access.read(siteId)
    return evaluate_alerts(session, rules, site["id"], notify=partial(background_tasks.add_task, dispatch_event))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_alert(
    body: AlertCreate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    site = access.write(body.siteId)
    check_type(body.type)
    alert_type = body.type or "traffic_spike"

    alert = rules.create("alert", site["id"], access.auth.id, {
        "name": (body.name or "").strip() or alert_type.replace("_", " ").capitalize(),
        "type": alert_type,
        "threshold": clamp(body.threshold, THRESHOLD_RANGE),
        "timeWindow": clamp(body.timeWindow, MINUTES_RANGE),
        "cooldown": clamp(body.cooldown, MINUTES_RANGE),
        "notifyEmail": body.notifyEmail is not False,
        "notifyWebhook": bool(body.notifyWebhook),
        "isActive": True,
        "lastTriggeredAt": None,
        "triggerCount": 0,
    })
    return {"success": True, "alert": alert}


@router.patch("")
def update_alert(
    body: AlertUpdate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    alert = load_rule(rules, access, "alert", body.alertId)
    check_type(body.type)

    updates = {
        "name": body.name.strip() if body.name else None,
        "type": body.type,
        "notifyEmail": body.notifyEmail,
        "notifyWebhook": body.notifyWebhook,
        "isActive": body.isActive,
    }
    if body.threshold is not None:
        updates["threshold"] = clamp(body.threshold, THRESHOLD_RANGE)
    if body.timeWindow is not None:
        updates["timeWindow"] = clamp(body.timeWindow, MINUTES_RANGE)
    if body.cooldown is not None:
        updates["cooldown"] = clamp(body.cooldown, MINUTES_RANGE)

    alert = rules.update("alert", alert, updates, (
        "name", "type", "threshold", "timeWindow", "cooldown", "notifyEmail", "notifyWebhook", "isActive",
    ))
    return {"success": True, "alert": alert}


@router.delete("")
def delete_alert(
    alertId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    alert = load_rule(rules, access, "alert", alertId)
    rules.delete("alert", alert)
    return {"success": True}
