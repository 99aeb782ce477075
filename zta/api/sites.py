import logging
import re
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlmodel import Session

from zta.analytics import PERIODS, delete_site_events
from zta.api.security import AuthContext, SiteAccess, get_current_user, get_site_access, hash_password
from zta.db import get_session
from zta.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from zta.models import ShareCreate, SiteCreate, SiteUpdate
from zta.storage import (
    AccountStore,
    HeatmapStore,
    RuleStore,
    SiteStore,
    TeamStore,
    get_accounts,
    get_heatmaps,
    get_rules,
    get_sites,
    get_teams,
)
from zta.storage.accounts import user_status
from zta.storage.sites import embed_code, normalize_domain, site_limit_for_plan
from zta.utils import utcnow

router = APIRouter(
    prefix="/api/sites",
    tags=["Sites"]
)

logger = logging.getLogger("ZTA.Sites")

DOMAIN_PATTERN = re.compile(r"^(localhost|[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)+)(:\d+)?$")
SHARE_EXPIRY = {"7d": timedelta(days=7), "30d": timedelta(days=30), "90d": timedelta(days=90), "never": None}


def clean_domain(domain: Optional[str]) -> str:
    if not domain or not domain.strip():
        raise ValidationError("Domain required")
    domain = normalize_domain(domain)
    if not DOMAIN_PATTERN.match(domain):
        raise ValidationError("Invalid domain")
    return domain


def public_share(share: dict) -> dict:
    result = {k: v for k, v in share.items() if k != "password"}
    result["hasPassword"] = bool(share.get("password"))
    return result


@router.post("/create", status_code=status.HTTP_201_CREATED)
def create_site(
    request: Request,
    body: SiteCreate,
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
    sites: SiteStore = Depends(get_sites),
):
    """
    Registers a domain for tracking and returns the embed snippet.
    Expired trials and plans at their site limit are refused.
    """
    domain = clean_domain(body.domain)

    account_status = user_status(auth.user)
    if not account_status["canAccess"]:
        raise ForbiddenError("Your trial has expired. Please subscribe to add sites.")

    existing = sites.get_user_sites(auth.id)
    limit = site_limit_for_plan(auth.user.get("plan"))
    if len(existing) >= limit:
        raise ForbiddenError(f"Site limit reached for your plan ({limit} sites)")
    if any(s["domain"] == domain for s in existing):
        raise ConflictError("Site already exists for this domain")

    site = sites.create_site(auth.id, domain, body.nickname)
    accounts.log_activity(auth.id, "site.create", {"domain": domain}, request.headers.get("user-agent"))
    return {"success": True, "site": site, "embedCode": embed_code(site["id"])}


@router.get("/list")
def list_sites(
    auth: AuthContext = Depends(get_current_user),
    sites: SiteStore = Depends(get_sites),
    teams: TeamStore = Depends(get_teams),
):
    result = [{**site, "isOwner": True} for site in sites.get_user_sites(auth.id)]
    owned = {site["id"] for site in result}
    for site_id in teams.get_team_site_ids(auth.id):
        if site_id in owned:
            continue
        site = sites.get_site(site_id)
        if site:
            result.append({**site, "isOwner": False, "isTeamSite": True})
    return {"sites": result}


@router.post("/update")
def update_site(
    request: Request,
    body: SiteUpdate,
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
    sites: SiteStore = Depends(get_sites),
):
    if not body.siteId:
        raise ValidationError("Site ID required")
    site = sites.get_site(body.siteId)
    if not site:
        raise NotFoundError("Site")
    if site["userId"] != auth.id:
        raise ForbiddenError("Access denied")

    updates = {}
    if body.domain is not None:
        updates["domain"] = clean_domain(body.domain)
    if body.nickname is not None:
        updates["nickname"] = body.nickname.strip() or None

    site = sites.update_site(body.siteId, updates)
    accounts.log_activity(auth.id, "site.update", {"domain": site["domain"]}, request.headers.get("user-agent"))
    return {"success": True, "site": site}


@router.delete("/delete")
def delete_site(
    request: Request,
    siteId: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    accounts: AccountStore = Depends(get_accounts),
    sites: SiteStore = Depends(get_sites),
    rules: RuleStore = Depends(get_rules),
    teams: TeamStore = Depends(get_teams),
    heatmaps: HeatmapStore = Depends(get_heatmaps),
):
    """
    Deletes a site with all its events, rules, share links, heatmaps and
    imported history.
    """
    if not siteId:
        raise ValidationError("Site ID required")
    site = sites.get_site(siteId)
    if not site:
        raise NotFoundError("Site")
    if site["userId"] != auth.id:
        raise ForbiddenError("Access denied")

    deleted_events = delete_site_events(session, siteId)
    rules.delete_site_rules(siteId)
    heatmaps.delete_site(siteId)
    teams.remove_site(siteId, auth.id)
    sites.delete_site(siteId, auth.id)
    accounts.log_activity(auth.id, "site.delete", {"domain": site["domain"]}, request.headers.get("user-agent"))
    return {"success": True, "deletedEvents": deleted_events}


# Public share links

@router.get("/share")
def list_shares(
    siteId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    sites: SiteStore = Depends(get_sites),
):
    access.write(siteId)
    return {"shares": [public_share(s) for s in sites.get_site_shares(siteId)]}


@router.post("/share", status_code=status.HTTP_201_CREATED)
def create_share(
    request: Request,
    body: ShareCreate,
    access: SiteAccess = Depends(get_site_access),
    accounts: AccountStore = Depends(get_accounts),
    sites: SiteStore = Depends(get_sites),
):
    """
    Creates a read-only public link to a site's stats.
    Optionally password protected and limited to some periods.
    """
    site = access.write(body.siteId)

    expires_in = body.expiresIn or "never"
    if expires_in not in SHARE_EXPIRY:
        raise ValidationError(f"Invalid expiresIn. Use one of: {', '.join(SHARE_EXPIRY)}")
    expires_at = None
    if SHARE_EXPIRY[expires_in]:
        expires_at = (utcnow() + SHARE_EXPIRY[expires_in]).isoformat()

    if body.allowedPeriods is not None:
        invalid = [p for p in body.allowedPeriods if p not in PERIODS]
        if invalid or not body.allowedPeriods:
            raise ValidationError(f"Invalid allowedPeriods. Use any of: {', '.join(PERIODS)}")

    password_hash = hash_password(body.password) if body.password else None
    share = sites.create_share(site["id"], access.auth.id, expires_at, password_hash, body.allowedPeriods)
    accounts.log_activity(access.auth.id, "share.create", {"domain": site["domain"]}, request.headers.get("user-agent"))
    return {"success": True, "share": public_share(share)}


@router.delete("/share")
def revoke_share(
    request: Request,
    token: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
    sites: SiteStore = Depends(get_sites),
):
    if not token:
        raise ValidationError("Share token required")
    if not sites.revoke_share(token, auth.id):
        raise NotFoundError("Share")
    accounts.log_activity(auth.id, "share.revoke", {}, request.headers.get("user-agent"))
    return {"success": True}
