import csv
import io
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from sqlmodel import Session

from zta import analytics
from zta.analytics import TimeBucket
from zta.api.security import SiteAccess, get_site_access, verify_password
from zta.config import settings
from zta.db import get_session
from zta.errors import AuthError, ForbiddenError, NotFoundError, ValidationError
from zta.limiter import limiter
from zta.storage import AccountStore, SiteStore, get_accounts, get_sites
from zta.storage.sites import DEFAULT_SHARE_PERIODS

router = APIRouter(
    prefix="/api",
    tags=["Stats"]
)

logger = logging.getLogger("ZTA.Stats")

EXPORT_FORMATS = ("json", "csv")


def imported_totals(sites: SiteStore, site_id: str, start: datetime, end: datetime) -> dict:
    """Totals of imported historical data that fall inside [start, end)."""
    last_day = end - timedelta(microseconds=1)
    days = sites.get_imported_days(site_id, start.date().isoformat(), last_day.date().isoformat())
    return analytics.summarize_imported(days)


@router.get("/stats")
@limiter.limit(settings.API_RATELIMIT)
def get_stats(
    request: Request,
    siteId: Optional[str] = Query(None),
    period: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    interval: Optional[TimeBucket] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    session: Session = Depends(get_session),
    sites: SiteStore = Depends(get_sites),
):
    """
    Dashboard statistics for a site over a period (24h, 7d, 30d, 90d,
    365d) or an explicit startDate/endDate range.
    """
    site = access.read(siteId)
    start, end = analytics.resolve_date_range(period, startDate, endDate)

    stats = analytics.get_stats(session, site["id"], start, end, interval)
    stats["imported"] = imported_totals(sites, site["id"], start, end)
    return stats


@router.get("/realtime")
@limiter.limit(settings.API_RATELIMIT)
def get_realtime(
    request: Request,
    response: Response,
    siteId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    session: Session = Depends(get_session),
):
    site = access.read(siteId)
    response.headers["Cache-Control"] = "no-cache"
    return analytics.get_realtime(session, site["id"], settings.REALTIME_WINDOW_MINUTES)


@router.get("/export")
@limiter.limit(settings.API_RATELIMIT)
def export_data(
    request: Request,
    siteId: Optional[str] = Query(None),
    export_format: str = Query("json", alias="format"),
    export_type: str = Query("pageviews", alias="type"),
    period: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    session: Session = Depends(get_session),
    accounts: AccountStore = Depends(get_accounts),
):
    """
    Raw rows for a site as JSON or a CSV download.
    type: pageviews | events | summary (daily totals).
    """
    site = access.read(siteId)
    if export_format not in EXPORT_FORMATS:
        raise ValidationError(f"Invalid format. Use one of: {', '.join(EXPORT_FORMATS)}")
    if export_type not in analytics.EXPORT_COLUMNS:
        raise ValidationError(f"Invalid type. Use one of: {', '.join(analytics.EXPORT_COLUMNS)}")

    start, end = analytics.resolve_date_range(period, startDate, endDate)
    rows = analytics.export_rows(session, site["id"], start, end, export_type)
    accounts.log_activity(access.auth.id, "data.export", {"format": export_format.upper()}, request.headers.get("user-agent"))

    if export_format == "json":
        return {
            "siteId": site["id"],
            "type": export_type,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "count": len(rows),
            "data": rows,
        }

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=analytics.EXPORT_COLUMNS[export_type], extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    filename = f"zta-{site['domain']}-{export_type}-{start.date().isoformat()}.csv"
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/public-stats")
@limiter.limit(settings.API_RATELIMIT)
def get_public_stats(
    request: Request,
    token: Optional[str] = Query(None),
    period: Optional[str] = Query(None),
    x_share_password: Optional[str] = Header(None),
    session: Session = Depends(get_session),
    sites: SiteStore = Depends(get_sites),
):
    """
    Stats behind a public share link. Password protected shares expect
    the password in the X-Share-Password header.
    """
    if not token:
        raise ValidationError("Share token required")
    share = sites.get_share(token)
    if not share:
        raise NotFoundError(message="Share link not found or expired")

    allowed = share.get("allowedPeriods") or DEFAULT_SHARE_PERIODS
    period = period or ("7d" if "7d" in allowed else allowed[0])
    if period not in allowed:
        raise ForbiddenError("Period not allowed for this share link")

    if share.get("password"):
        if not x_share_password:
            raise AuthError("Password required")
        if not verify_password(x_share_password, share["password"]):
            raise AuthError("Invalid password")

    site = sites.get_site(share["siteId"])
    if not site:
        raise NotFoundError("Site")

    start, end = analytics.resolve_date_range(period)
    return {
        "site": {"domain": site["domain"], "nickname": site.get("nickname")},
        "period": period,
        "allowedPeriods": allowed,
        "stats": analytics.get_stats(session, site["id"], start, end),
    }
