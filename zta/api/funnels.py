import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from zta.analytics import resolve_date_range
from zta.api.security import SiteAccess, get_site_access, load_rule
from zta.db import get_session
from zta.errors import ValidationError
from zta.models import FunnelCreate, FunnelStep, FunnelUpdate
from zta.reports import FUNNEL_STEP_TYPES, MAX_FUNNEL_STEPS, funnel_report
from zta.storage import RuleStore, get_rules
from zta.utils import utcnow

router = APIRouter(
    prefix="/api/funnels",
    tags=["Funnels"]
)

logger = logging.getLogger("ZTA.Funnels")

MIN_FUNNEL_STEPS = 2


def clean_steps(steps: List[FunnelStep]) -> List[dict]:
    if len(steps) < MIN_FUNNEL_STEPS or len(steps) > MAX_FUNNEL_STEPS:
        raise ValidationError(f"Funnels need between {MIN_FUNNEL_STEPS} and {MAX_FUNNEL_STEPS} steps")
    cleaned = []
    for i, step in enumerate(steps, start=1):
        if step.type not in FUNNEL_STEP_TYPES:
            raise ValidationError(f"Step {i}: type must be one of {', '.join(FUNNEL_STEP_TYPES)}")
        if not step.value or not step.value.strip():
            raise ValidationError(f"Step {i}: value required")
        cleaned.append({"type": step.type, "value": step.value.strip(), "name": step.name or step.value.strip()})
    return cleaned


@router.get("")
def list_funnels(
    siteId: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    session: Session = Depends(get_session),
    rules: RuleStore = Depends(get_rules),
):
    """
    Funnels of a site, each with per-step conversion for the date range.
    Defaults to the current month.
    """
    site = access.read(siteId)
    if startDate or endDate:
        start, end = resolve_date_range(None, startDate, endDate)
    else:
        end = utcnow()
        start = end.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    funnels = []
    for funnel in rules.list("funnel", site["id"]):
        report = funnel_report(session, site["id"], funnel["steps"], start, end)
        funnels.append({**funnel, **report})
    return {"funnels": funnels}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_funnel(
    body: FunnelCreate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    site = access.write(body.siteId)
    if not body.name or not body.name.strip():
        raise ValidationError("Funnel name required")
    funnel = rules.create("funnel", site["id"], access.auth.id, {
        "name": body.name.strip(),
        "steps": clean_steps(body.steps),
    })
    return {"success": True, "funnel": funnel}


@router.patch("")
def update_funnel(
    body: FunnelUpdate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    funnel = load_rule(rules, access, "funnel", body.funnelId)
    updates = {}
    if body.name is not None:
        if not body.name.strip():
            raise ValidationError("Funnel name required")
        updates["name"] = body.name.strip()
    if body.steps is not None:
        updates["steps"] = clean_steps(body.steps)
    funnel = rules.update("funnel", funnel, updates, ("name", "steps"))
    return {"success": True, "funnel": funnel}


@router.delete("")
def delete_funnel(
    funnelId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    funnel = load_rule(rules, access, "funnel", funnelId)
    rules.delete("funnel", funnel)
    return {"success": True}
