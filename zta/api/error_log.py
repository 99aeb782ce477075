import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from zta import core
from zta.api.security import SiteAccess, get_site_access
from zta.config import settings
from zta.errors import NotFoundError, ValidationError
from zta.limiter import limiter
from zta.models import ErrorReport
from zta.storage import SiteStore, get_sites

router = APIRouter(
    prefix="/api/errors",
    tags=["Errors"]
)

logger = logging.getLogger("ZTA.ErrorLog")


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.TRACK_ENDPOINT_RATELIMIT)
def report_error(
    request: Request,
    body: ErrorReport,
    sites: SiteStore = Depends(get_sites),
):
    """
    Client-side error report from the tracking script. Repeats of the same
    site, type and URL within the dedup window only increase the count.
    """
    if not body.site_id or not body.type or not body.url:
        raise ValidationError("site_id, type and url required")
    if not sites.get_site(body.site_id):
        raise NotFoundError(message="Invalid site ID")

    context = core.parse_context(body.user_agent or request.headers.get("user-agent"))
    result = sites.log_error(body.site_id, body.type, core.clean_path(body.url), {
        "referrer": core.referrer_domain(body.referrer),
        "user_agent": f"{context['browser']}/{context['os']}/{context['device']}",
        "message": body.message,
        "stack": body.stack,
        "metadata": body.metadata,
    })
    return {"success": True, "id": result["error"]["id"], "deduplicated": result["deduplicated"]}


@router.get("")
def list_errors(
    siteId: Optional[str] = Query(None),
    error_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(100, ge=1, le=500),
    access: SiteAccess = Depends(get_site_access),
    sites: SiteStore = Depends(get_sites),
):
    site = access.read(siteId)
    errors = sites.list_errors(site["id"], error_type, limit)
    return {"errors": errors, "total": len(errors)}
