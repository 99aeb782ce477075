import logging
from datetime import date, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from zta import core
from zta.api.security import SiteAccess, get_site_access
from zta.config import settings
from zta.errors import NotFoundError, ValidationError
from zta.limiter import limiter
from zta.models import HeatmapRecord
from zta.storage import HeatmapStore, SiteStore, get_heatmaps, get_sites
from zta.utils import utcnow

router = APIRouter(
    prefix="/api/heatmaps",
    tags=["Heatmaps"]
)

logger = logging.getLogger("ZTA.Heatmaps")

HEATMAP_TYPES = ("click", "scroll")
VIEWS = ("pages", "clicks", "scroll")
MAX_RANGE_DAYS = 90


def percentage(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number between 0 and 100")
    if not 0 <= number <= 100:
        raise ValidationError(f"{name} must be a number between 0 and 100")
    return number


def heatmap_range(start_date: Optional[str], end_date: Optional[str]) -> tuple:
    """YYYY-MM-DD bounds, inclusive. Defaults to the last 7 days."""
    today = utcnow().date()
    try:
        end = date.fromisoformat(end_date) if end_date else today
        start = date.fromisoformat(start_date) if start_date else end - timedelta(days=6)
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")
    if start > end:
        raise ValidationError("startDate must be before endDate")
    if (end - start).days > MAX_RANGE_DAYS:
        raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")
    return start.isoformat(), end.isoformat()


@router.post("", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.TRACK_ENDPOINT_RATELIMIT)
def record_heatmap(
    request: Request,
    body: HeatmapRecord,
    sites: SiteStore = Depends(get_sites),
    heatmaps: HeatmapStore = Depends(get_heatmaps),
):
    """
    Collects a click (x, y as viewport percentages) or a scroll depth
    sample from the tracking script.
    """
    if not body.siteId:
        raise ValidationError("Site ID required")
    if body.type not in HEATMAP_TYPES:
        raise ValidationError(f"Invalid type. Use one of: {', '.join(HEATMAP_TYPES)}")
    if not sites.get_site(body.siteId):
        raise NotFoundError(message="Invalid site ID")
    if core.is_bot(request.headers.get("user-agent")):
        return {"success": True}

    data = body.data or {}
    path = core.clean_path(data.get("path"))
    if not core.validate_no_pii(path):
        raise ValidationError("Invalid data: personal information is not accepted")

    if body.type == "click":
        heatmaps.record_click(body.siteId, path, percentage(data.get("x"), "x"), percentage(data.get("y"), "y"))
    else:
        heatmaps.record_scroll(body.siteId, path, percentage(data.get("depth"), "depth"))
    return {"success": True}


@router.get("")
def get_heatmap(
    siteId: Optional[str] = Query(None),
    view: str = Query("pages", alias="type"),
    path: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    heatmaps: HeatmapStore = Depends(get_heatmaps),
):
    site = access.read(siteId)
    if view not in VIEWS:
        raise ValidationError(f"Invalid type. Use one of: {', '.join(VIEWS)}")
    start, end = heatmap_range(startDate, endDate)

    if view == "pages":
        return {"pages": heatmaps.get_pages(site["id"], start, end), "dateRange": {"startDate": start, "endDate": end}}

    if not path:
        raise ValidationError("Path required")
    path = core.clean_path(path)
    if view == "clicks":
        return heatmaps.get_clicks(site["id"], path, start, end)
    return heatmaps.get_scroll(site["id"], path, start, end)
