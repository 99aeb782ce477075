import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlmodel import Session

from zta.analytics import delete_site_events
from zta.api.security import AuthContext, get_current_user, verify_password
from zta.db import get_session
from zta.errors import AuthError, NotFoundError, ValidationError
from zta.models import DeleteAccountRequest
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
from zta.utils import iso_now

router = APIRouter(
    prefix="/api",
    tags=["User"]
)

logger = logging.getLogger("ZTA.User")


@router.get("/user/status")
def get_user_status(
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    user = accounts.get_user_by_id(auth.id)
    if not user:
        raise NotFoundError("User")
    status = user_status(user)
    return {
        "id": user["id"],
        "email": user["email"],
        "plan": status.get("plan"),
        "status": status["status"],
        "canAccess": status["canAccess"],
        "trialEndsAt": user.get("trialEndsAt"),
        "daysLeft": status.get("daysLeft", 0),
        "subscription": user.get("subscription"),
    }


@router.get("/user/sessions")
def list_sessions(
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    sessions = []
    for session in accounts.get_user_sessions(auth.id):
        sessions.append({
            "id": session["id"],
            "device": session["device"],
            "ipAddress": session["ipAddress"],
            "createdAt": session["createdAt"],
            "lastActiveAt": session["lastActiveAt"],
            "isCurrent": session["id"] == auth.session_id,
        })
    return {"sessions": sessions}


@router.delete("/user/sessions")
def revoke_sessions(
    request: Request,
    sessionId: Optional[str] = Query(None),
    revoke_all: bool = Query(False, alias="all"),
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    """
    Signs out one device (?sessionId=) or every other device (?all=true).
    The current session survives ?all=true.
    """
    user_agent = request.headers.get("user-agent")
    if revoke_all:
        revoked = accounts.revoke_all_sessions(auth.id, except_session_id=auth.session_id)
        accounts.log_activity(auth.id, "session.revoke_all", {"count": revoked}, user_agent)
        return {"success": True, "revoked": revoked}

    if not sessionId:
        raise ValidationError("Session ID required")
    if not accounts.revoke_session(sessionId, auth.id):
        raise NotFoundError("Session")
    accounts.log_activity(auth.id, "session.revoke", {"sessionId": sessionId}, user_agent)
    return {"success": True, "revoked": 1}


@router.get("/activity")
def get_activity(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    return accounts.get_activity_log(auth.id, limit=limit, offset=offset)


@router.get("/user/export")
def export_user_data(
    request: Request,
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
    sites: SiteStore = Depends(get_sites),
    teams: TeamStore = Depends(get_teams),
):
    """
    Everything stored about the account, as a downloadable JSON file.
    Password hashes and API key hashes are left out.
    """
    user = {k: v for k, v in auth.user.items() if k not in ("passwordHash", "tokenInvalidatedAt")}
    data = {
        "exportedAt": iso_now(),
        "user": user,
        "sites": sites.get_user_sites(auth.id),
        "teams": teams.get_user_teams(auth.id),
        "apiKeys": accounts.get_user_api_keys(auth.id),
        "sessions": accounts.get_user_sessions(auth.id),
        "activity": accounts.get_activity_log(auth.id, limit=100)["activities"],
    }
    accounts.log_activity(auth.id, "data.export", {"format": "account data"}, request.headers.get("user-agent"))
    return Response(
        content=json.dumps(data, indent=2, default=str),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="zta-account-export.json"'},
    )


@router.delete("/user")
def delete_account(
    body: DeleteAccountRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    accounts: AccountStore = Depends(get_accounts),
    sites: SiteStore = Depends(get_sites),
    rules: RuleStore = Depends(get_rules),
    teams: TeamStore = Depends(get_teams),
    heatmaps: HeatmapStore = Depends(get_heatmaps),
):
    """
    Permanently deletes the account with its sites, their events and
    configuration, API keys, sessions and activity.
    """
    if not body.password:
        raise ValidationError("Password required")
    if not verify_password(body.password, auth.user["passwordHash"]):
        raise AuthError("Invalid password")

    deleted_events = 0
    for site in sites.get_user_sites(auth.id):
        deleted_events += delete_site_events(session, site["id"])
        rules.delete_site_rules(site["id"])
        heatmaps.delete_site(site["id"])
        teams.remove_site(site["id"], auth.id)
        sites.delete_site(site["id"], auth.id)

    for team in teams.get_user_teams(auth.id):
        if team["role"] != "owner":
            teams.leave_team(team["id"], auth.id)

    accounts.delete_user(auth.user)
    logger.info(f"Deleted account {auth.id} and {deleted_events} events")
    return {"success": True, "message": "Account deleted"}
