import logging
import re
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

from zta.config import settings
from zta.errors import AuthError, ForbiddenError, NotFoundError, ValidationError
from zta.storage import AccountStore, RuleStore, SiteStore, TeamStore, get_accounts, get_sites, get_teams

logger = logging.getLogger("ZTA.Security")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)

EXPIRY_UNITS = {"m": 60, "h": 3600, "d": 86400, "w": 604800, "y": 31536000}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def parse_expiry(value: str) -> timedelta:
    """'7d' -> 7 days. Units: m(inutes), h, d, w, y."""
    match = re.match(r"^(\d+)([mhdwy])$", value)
    if not match:
        raise ValueError(f"Invalid expiry: {value}")
    return timedelta(seconds=int(match.group(1)) * EXPIRY_UNITS[match.group(2)])


def create_token(user: Dict[str, Any], session_id: Optional[str] = None) -> str:
    now = int(time.time())
    payload = {
        "id": user["id"],
        "email": user["email"],
        "iat": now,
        "exp": now + int(parse_expiry(settings.JWT_EXPIRY).total_seconds()),
    }
    if session_id:
        payload["sid"] = session_id
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        # Only the configured algorithm is accepted
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AuthError("Token expired. Please log in again.")
    except JWTError:
        raise AuthError("Invalid token")


@dataclass
class AuthContext:
    """The authenticated caller: a user plus how they authenticated."""
    user: Dict[str, Any]
    session_id: Optional[str] = None
    api_key: Optional[Dict[str, Any]] = None

    @property
    def id(self) -> str:
        return self.user["id"]

    @property
    def email(self) -> str:
        return self.user["email"]


def get_current_user(
    request: Request,
    auth: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False)),
    accounts: AccountStore = Depends(get_accounts),
) -> AuthContext:
    """
    Accepts either a login JWT or an API key (zta_live_...) as the Bearer
    token. Read-only API keys may only be used for GET requests.
    """
    if not auth or not auth.credentials:
        raise AuthError("Authentication required")

    token = auth.credentials
    if token.startswith("zta_"):
        api_key = accounts.validate_api_key(token)
        if not api_key:
            raise AuthError("Invalid API key")
        permissions = api_key.get("permissions") or []
        if request.method != "GET" and not ({"write", "admin"} & set(permissions)):
            raise ForbiddenError("API key does not have write permission")
        user = accounts.get_user_by_id(api_key["userId"])
        if not user:
            raise AuthError("Invalid API key")
        return AuthContext(user=user, api_key=api_key)

    payload = decode_token(token)
    user = accounts.get_user_by_id(payload.get("id", ""))
    if not user:
        raise AuthError("Invalid token")

    invalidated_at = user.get("tokenInvalidatedAt")
    if invalidated_at and payload.get("iat", 0) < int(invalidated_at):
        raise AuthError("Token has been revoked. Please log in again.")

    session_id = payload.get("sid")
    if session_id:
        session = accounts.get_session(session_id)
        if not session or not session.get("isActive"):
            raise AuthError("Session has been revoked. Please log in again.")
        accounts.touch_session(session)

    return AuthContext(user=user, session_id=session_id)


class SiteAccess:
    """
    Resolves a siteId for the caller. Owners get full access; members of a
    team the site belongs to get read access.
    """

    def __init__(self, auth: AuthContext, sites: SiteStore, teams: TeamStore):
        self.auth = auth
        self.sites = sites
        self.teams = teams

    def read(self, site_id: Optional[str]) -> Dict[str, Any]:
        if not site_id:
            raise ValidationError("Site ID required")
        site = self.sites.get_site(site_id)
        if site and site["userId"] == self.auth.id:
            return site
        if site and site_id in self.teams.get_team_site_ids(self.auth.id):
            return site
        raise ForbiddenError("Access denied")

    def write(self, site_id: Optional[str]) -> Dict[str, Any]:
        if not site_id:
            raise ValidationError("Site ID required")
        site = self.sites.get_site(site_id)
        if not site or site["userId"] != self.auth.id:
            raise ForbiddenError("Access denied")
        return site


def get_site_access(
    auth: AuthContext = Depends(get_current_user),
    sites: SiteStore = Depends(get_sites),
    teams: TeamStore = Depends(get_teams),
) -> SiteAccess:
    return SiteAccess(auth, sites, teams)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def load_rule(rules: RuleStore, access: SiteAccess, kind: str, record_id: Optional[str]) -> Dict[str, Any]:
    """
    Fetches a goal/funnel/alert/annotation/webhook by id for modification.
    Only the owner of the rule's site may change it.
    """
    label = kind.capitalize()
    if not record_id:
        raise ValidationError(f"{label} ID required")
    record = rules.get(kind, record_id)
    if not record:
        raise NotFoundError(label)
    access.write(record["siteId"])
    return record
