"""
Teams, memberships and invitations. Team members get read access to the
sites attached to their teams.
"""
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from zta.config import settings
from zta.errors import ForbiddenError, NotFoundError, ValidationError
from zta.storage.blob import BlobStore, add_to_index, read_index, remove_from_index
from zta.utils import iso_now, parse_iso, utcnow

logger = logging.getLogger("ZTA.Teams")

TEAMS = "teams"
TEAM_ROLES = ("owner", "admin", "editor", "viewer")
MANAGER_ROLES = ("owner", "admin")


class TeamStore:

    def __init__(self, blob: BlobStore):
        self.blob = blob

    def create_team(self, user_id: str, email: str, name: Optional[str]) -> Dict[str, Any]:
        now = iso_now()
        team = {
            "id": f"team_{uuid.uuid4().hex[:12]}",
            "name": name or "My Team",
            "ownerId": user_id,
            "createdAt": now,
            "members": [{"userId": user_id, "email": email, "role": "owner", "joinedAt": now}],
            "sites": [],
        }
        self.blob.set(TEAMS, team["id"], team)
        add_to_index(self.blob, TEAMS, f"user_teams_{user_id}", team["id"])
        logger.info(f"Created team {team['id']}")
        return team

    def get_team(self, team_id: str) -> Optional[Dict[str, Any]]:
        if not team_id:
            return None
        return self.blob.get(TEAMS, team_id)

    def _save(self, team: Dict[str, Any]):
        self.blob.set(TEAMS, team["id"], team)

    def get_member_role(self, team_id: str, user_id: str) -> Optional[str]:
        team = self.get_team(team_id)
        if not team:
            return None
        for member in team["members"]:
            if member["userId"] == user_id:
                return member["role"]
        return None

    def get_user_teams(self, user_id: str) -> List[Dict[str, Any]]:
        teams = []
        for team_id in read_index(self.blob, TEAMS, f"user_teams_{user_id}"):
            team = self.get_team(team_id)
            if not team:
                continue
            role = self.get_member_role(team_id, user_id)
            teams.append({
                "id": team["id"],
                "name": team["name"],
                "role": role,
                "memberCount": len(team["members"]),
                "siteCount": len(team["sites"]),
                "createdAt": team["createdAt"],
            })
        return teams

    def get_team_site_ids(self, user_id: str) -> List[str]:
        """Every site reachable through the user's team memberships."""
        site_ids: List[str] = []
        for team_id in read_index(self.blob, TEAMS, f"user_teams_{user_id}"):
            team = self.get_team(team_id)
            if team:
                site_ids.extend(s for s in team["sites"] if s not in site_ids)
        return site_ids

    def update_team(self, team_id: str, user_id: str, name: Optional[str]) -> Dict[str, Any]:
        team = self.get_team(team_id)
        if not team:
            raise NotFoundError("Team")
        if self.get_member_role(team_id, user_id) not in MANAGER_ROLES:
            raise ForbiddenError("Only owners and admins can update the team")
        if name:
            team["name"] = name
        team["updatedAt"] = iso_now()
        self._save(team)
        return team

    def add_site(self, team_id: str, site_id: str, user_id: str):
        team = self.get_team(team_id)
        if not team:
            raise NotFoundError("Team")
        if self.get_member_role(team_id, user_id) not in MANAGER_ROLES:
            raise ForbiddenError("Only owners and admins can add sites")
        if site_id in team["sites"]:
            raise ValidationError("Site already in team")
        team["sites"].append(site_id)
        self._save(team)

    def remove_site(self, site_id: str, user_id: str):
        for team_id in read_index(self.blob, TEAMS, f"user_teams_{user_id}"):
            team = self.get_team(team_id)
            if team and site_id in team["sites"]:
                team["sites"].remove(site_id)
                self._save(team)

    # Invites

    def create_invite(self, team_id: str, invited_by: str, email: str, role: str) -> Dict[str, Any]:
        team = self.get_team(team_id)
        if not team:
            raise NotFoundError("Team")
        email = email.lower()
        if any(m["email"] == email for m in team["members"]):
            raise ValidationError("User is already a team member")
        for invite in self.get_invites(team_id):
            if invite["email"] == email:
                raise ValidationError("Invite already pending for this email")

        now = utcnow()
        invite = {
            "id": f"inv_{uuid.uuid4().hex[:12]}",
            "token": secrets.token_urlsafe(24),
            "teamId": team_id,
            "email": email,
            "role": role,
            "invitedBy": invited_by,
            "createdAt": now.isoformat(),
            "expiresAt": (now + timedelta(days=settings.INVITE_TTL_DAYS)).isoformat(),
            "status": "pending",
        }
        self.blob.set(TEAMS, invite["id"], invite)
        self.blob.set(TEAMS, f"invite_token_{invite['token']}", invite["id"])
        add_to_index(self.blob, TEAMS, f"team_invites_{team_id}", invite["id"])
        logger.info(f"Created invite {invite['id']} for team {team_id}")
        return invite

    def get_invites(self, team_id: str) -> List[Dict[str, Any]]:
        invites = []
        now = utcnow()
        for invite_id in read_index(self.blob, TEAMS, f"team_invites_{team_id}"):
            invite = self.blob.get(TEAMS, invite_id)
            if invite and invite["status"] == "pending" and parse_iso(invite["expiresAt"]) > now:
                invites.append({k: v for k, v in invite.items() if k != "token"})
        return invites

    def get_invite_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Pending, unexpired invite for a token, or None."""
        invite_id = self.blob.get(TEAMS, f"invite_token_{token}") if token else None
        if not invite_id:
            return None
        invite = self.blob.get(TEAMS, invite_id)
        if not invite or invite["status"] != "pending":
            return None
        if parse_iso(invite["expiresAt"]) < utcnow():
            return None
        return invite

    def accept_invite(self, invite: Dict[str, Any], user_id: str, email: str) -> Dict[str, Any]:
        if invite["email"] != email.lower():
            raise ForbiddenError("This invite was sent to a different email address")
        team = self.get_team(invite["teamId"])
        if not team:
            raise NotFoundError("Team")
        if not any(m["userId"] == user_id for m in team["members"]):
            team["members"].append({
                "userId": user_id,
                "email": email.lower(),
                "role": invite["role"],
                "joinedAt": iso_now(),
            })
            self._save(team)
            add_to_index(self.blob, TEAMS, f"user_teams_{user_id}", team["id"])
        invite["status"] = "accepted"
        invite["acceptedAt"] = iso_now()
        self.blob.set(TEAMS, invite["id"], invite)
        self.blob.delete(TEAMS, f"invite_token_{invite['token']}")
        remove_from_index(self.blob, TEAMS, f"team_invites_{team['id']}", invite["id"])
        return team

    def revoke_invite(self, team_id: str, invite_id: str, user_id: str):
        if self.get_member_role(team_id, user_id) not in MANAGER_ROLES:
            raise ForbiddenError("Only owners and admins can revoke invites")
        invite = self.blob.get(TEAMS, invite_id)
        if not invite or invite["teamId"] != team_id:
            raise NotFoundError("Invite")
        invite["status"] = "revoked"
        self.blob.set(TEAMS, invite_id, invite)
        self.blob.delete(TEAMS, f"invite_token_{invite['token']}")
        remove_from_index(self.blob, TEAMS, f"team_invites_{team_id}", invite_id)

    # Members

    def update_member_role(self, team_id: str, member_id: str, role: str, user_id: str) -> Dict[str, Any]:
        if role not in TEAM_ROLES or role == "owner":
            raise ValidationError("Invalid role")
        if self.get_member_role(team_id, user_id) not in MANAGER_ROLES:
            raise ForbiddenError("Only owners and admins can change roles")
        team = self.get_team(team_id)
        for member in team["members"]:
            if member["userId"] == member_id:
                if member["role"] == "owner":
                    raise ValidationError("Cannot change the owner's role")
                member["role"] = role
                self._save(team)
                return member
        raise NotFoundError("Member")

    def remove_member(self, team_id: str, member_id: str, user_id: str):
        if self.get_member_role(team_id, user_id) not in MANAGER_ROLES:
            raise ForbiddenError("Only owners and admins can remove members")
        team = self.get_team(team_id)
        member = next((m for m in team["members"] if m["userId"] == member_id), None)
        if not member:
            raise NotFoundError("Member")
        if member["role"] == "owner":
            raise ValidationError("Cannot remove the team owner")
        team["members"].remove(member)
        self._save(team)
        remove_from_index(self.blob, TEAMS, f"user_teams_{member_id}", team_id)

    def leave_team(self, team_id: str, user_id: str):
        role = self.get_member_role(team_id, user_id)
        if not role:
            raise ValidationError("You are not a member of this team")
        if role == "owner":
            raise ValidationError("Owner cannot leave the team")
        team = self.get_team(team_id)
        team["members"] = [m for m in team["members"] if m["userId"] != user_id]
        self._save(team)
        remove_from_index(self.blob, TEAMS, f"user_teams_{user_id}", team_id)
