import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from zta.api.security import AuthContext, get_current_user
from zta.errors import ForbiddenError, NotFoundError, ValidationError
from zta.models import InviteAccept, TeamAction
from zta.storage import SiteStore, TeamStore, get_sites, get_teams
from zta.storage.teams import MANAGER_ROLES, TEAM_ROLES

router = APIRouter(
    prefix="/api",
    tags=["Teams"]
)

logger = logging.getLogger("ZTA.Teams")


def team_details(team: dict, role: str, teams: TeamStore, sites: SiteStore) -> dict:
    details = {
        "id": team["id"],
        "name": team["name"],
        "ownerId": team["ownerId"],
        "createdAt": team["createdAt"],
        "role": role,
        "members": team["members"],
        "sites": [
            {"id": s["id"], "domain": s["domain"], "nickname": s.get("nickname")}
            for s in (sites.get_site(site_id) for site_id in team["sites"])
            if s
        ],
    }
    if role in MANAGER_ROLES:
        details["invites"] = teams.get_invites(team["id"])
    return details


@router.get("/teams")
def get_teams_view(
    teamId: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_current_user),
    teams: TeamStore = Depends(get_teams),
    sites: SiteStore = Depends(get_sites),
):
    """
    Without teamId: the caller's teams. With teamId: members, sites and,
    for owners and admins, pending invites.
    """
    if not teamId:
        return {"teams": teams.get_user_teams(auth.id)}

    team = teams.get_team(teamId)
    if not team:
        raise NotFoundError("Team")
    role = teams.get_member_role(teamId, auth.id)
    if not role:
        raise ForbiddenError("Access denied")
    return {"team": team_details(team, role, teams, sites)}


@router.post("/teams", status_code=status.HTTP_201_CREATED)
def post_team_action(
    body: TeamAction,
    response: Response,
    auth: AuthContext = Depends(get_current_user),
    teams: TeamStore = Depends(get_teams),
    sites: SiteStore = Depends(get_sites),
):
    """Actions: create, invite, addSite."""
    if body.action == "create":
        team = teams.create_team(auth.id, auth.email, (body.name or "").strip() or None)
        return {"success": True, "team": team}

    if body.action == "invite":
        if not body.teamId or not body.email:
            raise ValidationError("Team ID and email required")
        role = body.role or "viewer"
        if role not in TEAM_ROLES or role == "owner":
            raise ValidationError("Invalid role")
        if teams.get_member_role(body.teamId, auth.id) not in MANAGER_ROLES:
            raise ForbiddenError("Only owners and admins can invite members")
        invite = teams.create_invite(body.teamId, auth.id, body.email, role)
        return {"success": True, "invite": invite}

    if body.action == "addSite":
        if not body.teamId or not body.siteId:
            raise ValidationError("Team ID and site ID required")
        site = sites.get_site(body.siteId)
        if not site or site["userId"] != auth.id:
            raise ForbiddenError("You can only add sites you own")
        teams.add_site(body.teamId, body.siteId, auth.id)
        response.status_code = status.HTTP_200_OK
        return {"success": True}

    raise ValidationError("Invalid action")


@router.patch("/teams")
def patch_team_action(
    body: TeamAction,
    auth: AuthContext = Depends(get_current_user),
    teams: TeamStore = Depends(get_teams),
):
    """Actions: updateTeam, updateRole."""
    if not body.teamId:
        raise ValidationError("Team ID required")

    if body.action == "updateTeam":
        team = teams.update_team(body.teamId, auth.id, (body.name or "").strip() or None)
        return {"success": True, "team": team}

    if body.action == "updateRole":
        if not body.memberId or not body.role:
            raise ValidationError("Member ID and role required")
        member = teams.update_member_role(body.teamId, body.memberId, body.role, auth.id)
        return {"success": True, "member": member}

    raise ValidationError("Invalid action")


@router.delete("/teams")
def delete_team_member(
    teamId: Optional[str] = Query(None),
    memberId: Optional[str] = Query(None),
    inviteId: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_current_user),
    teams: TeamStore = Depends(get_teams),
):
    """Removes a member, revokes an invite, or leaves the team (action=leave)."""
    if not teamId:
        raise ValidationError("Team ID required")
    if not teams.get_team(teamId):
        raise NotFoundError("Team")

    if action == "leave":
        teams.leave_team(teamId, auth.id)
    elif inviteId:
        teams.revoke_invite(teamId, inviteId, auth.id)
    elif memberId:
        teams.remove_member(teamId, memberId, auth.id)
    else:
        raise ValidationError("Member ID, invite ID or action=leave required")
    return {"success": True}


@router.get("/invite")
def get_invite(
    token: Optional[str] = Query(None),
    teams: TeamStore = Depends(get_teams),
):
    if not token:
        raise ValidationError("Invite token required")
    invite = teams.get_invite_by_token(token)
    if not invite:
        raise NotFoundError(message="Invite not found or expired")
    team = teams.get_team(invite["teamId"])
    return {
        "invite": {
            "teamId": invite["teamId"],
            "teamName": team["name"] if team else None,
            "email": invite["email"],
            "role": invite["role"],
            "expiresAt": invite["expiresAt"],
        }
    }


@router.post("/invite")
def accept_invite(
    body: InviteAccept,
    auth: AuthContext = Depends(get_current_user),
    teams: TeamStore = Depends(get_teams),
):
    if not body.token:
        raise ValidationError("Invite token required")
    invite = teams.get_invite_by_token(body.token)
    if not invite:
        raise NotFoundError(message="Invite not found or expired")
    team = teams.accept_invite(invite, auth.id, auth.email)
    logger.info(f"User {auth.id} joined team {team['id']}")
    return {"success": True, "team": {"id": team["id"], "name": team["name"], "role": invite["role"]}}
