import logging
import re
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from zta.api.security import SiteAccess, get_site_access, load_rule
from zta.errors import ValidationError
from zta.models import AnnotationCreate, AnnotationUpdate
from zta.storage import RuleStore, get_rules

router = APIRouter(
    prefix="/api/annotations",
    tags=["Annotations"]
)

logger = logging.getLogger("ZTA.Annotations")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def check_date(value: Optional[str]) -> str:
    if not value or not DATE_PATTERN.match(value):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")
    return value


@router.get("")
def list_annotations(
    siteId: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    """Chart annotations of a site, oldest first, optionally within a date range."""
    site = access.read(siteId)
    annotations = rules.list("annotation", site["id"])
    if startDate:
        annotations = [a for a in annotations if a["date"] >= startDate]
    if endDate:
        annotations = [a for a in annotations if a["date"] <= endDate]
    annotations.sort(key=lambda a: a["date"])
    return {"annotations": annotations}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_annotation(
    body: AnnotationCreate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    site = access.write(body.siteId)
    annotation_date = check_date(body.date)
    if not body.title or not body.title.strip():
        raise ValidationError("Title required")

    annotation = rules.create("annotation", site["id"], access.auth.id, {
        "date": annotation_date,
        "title": body.title.strip(),
        "description": body.description,
        "color": body.color or "#6366f1",
        "icon": body.icon,
    })
    return {"success": True, "annotation": annotation}


@router.patch("")
def update_annotation(
    body: AnnotationUpdate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    annotation = load_rule(rules, access, "annotation", body.annotationId)
    if body.date is not None:
        check_date(body.date)
    if body.title is not None and not body.title.strip():
        raise ValidationError("Title required")

    annotation = rules.update("annotation", annotation, {
        "date": body.date,
        "title": body.title.strip() if body.title else None,
        "description": body.description,
        "color": body.color,
        "icon": body.icon,
    }, ("date", "title", "description", "color", "icon"))
    return {"success": True, "annotation": annotation}


@router.delete("")
def delete_annotation(
    annotationId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    annotation = load_rule(rules, access, "annotation", annotationId)
    rules.delete("annotation", annotation)
    return {"success": True}
