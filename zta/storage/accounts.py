"""
User accounts, login sessions, password reset tokens, API keys and the
per-user activity log.
"""
import hashlib
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from zta.config import settings
from zta.storage.blob import BlobStore, add_to_index, read_index
from zta.utils import iso_now, parse_iso, utcnow

logger = logging.getLogger("ZTA.Accounts")

USERS = "users"
RESET_TOKENS = "password-reset-tokens"
SESSIONS = "sessions"
API_KEYS = "api-keys"
ACTIVITY = "activity-log"

ACTIVITY_LIMIT = 100
API_KEY_PERMISSIONS = ("read", "write", "admin")

ACTIVITY_TYPES = (
    "auth.login", "auth.logout", "auth.password_change", "auth.password_reset",
    "site.create", "site.update", "site.delete",
    "api_key.create", "api_key.revoke",
    "share.create", "share.revoke",
    "session.revoke", "session.revoke_all",
    "data.export",
)


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


def describe_device(user_agent: Optional[str]) -> Dict[str, str]:
    """Readable device summary shown in the active sessions list."""
    if not user_agent:
        return {"type": "Unknown", "browser": "Unknown", "os": "Unknown"}
    ua = user_agent.lower()

    device_type = "Desktop"
    if any(token in ua for token in ("mobile", "android", "iphone", "ipad")):
        device_type = "Mobile"
    if "tablet" in ua or "ipad" in ua:
        device_type = "Tablet"

    browser = "Unknown"
    if "edg" in ua:
        browser = "Edge"
    elif "firefox" in ua:
        browser = "Firefox"
    elif "chrome" in ua:
        browser = "Chrome"
    elif "safari" in ua:
        browser = "Safari"

    os_name = "Unknown"
    if "windows" in ua:
        os_name = "Windows"
    elif "iphone" in ua or "ipad" in ua:
        os_name = "iOS"
    elif "mac" in ua:
        os_name = "macOS"
    elif "android" in ua:
        os_name = "Android"
    elif "linux" in ua:
        os_name = "Linux"

    return {"type": device_type, "browser": browser, "os": os_name}


def user_status(user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Works out whether a user may use the product.
    An active subscription wins; otherwise the trial end date decides.
    """
    if not user:
        return {"status": "none", "canAccess": False}

    plan = user.get("plan") or "pro"
    subscription = user.get("subscription")
    if subscription and subscription.get("status") == "active":
        return {"status": "active", "plan": plan, "canAccess": True, "subscription": subscription}

    trial_ends_at = parse_iso(user.get("trialEndsAt"))
    now = utcnow()
    if trial_ends_at and now < trial_ends_at:
        seconds_left = (trial_ends_at - now).total_seconds()
        days_left = int(-(-seconds_left // 86400))
        return {
            "status": "trial",
            "plan": plan,
            "canAccess": True,
            "trialEndsAt": user.get("trialEndsAt"),
            "daysLeft": days_left,
        }

    return {"status": "expired", "plan": plan, "canAccess": False, "trialEndsAt": user.get("trialEndsAt")}


def format_activity_message(activity: Dict[str, Any]) -> str:
    details = activity.get("details") or {}
    messages = {
        "auth.login": "Signed in",
        "auth.logout": "Signed out",
        "auth.password_change": "Changed password",
        "auth.password_reset": "Reset password",
        "site.create": f'Created site "{details.get("domain", "Unknown")}"',
        "site.update": f'Updated site "{details.get("domain", "Unknown")}"',
        "site.delete": f'Deleted site "{details.get("domain", "Unknown")}"',
        "api_key.create": f'Created API key "{details.get("name", "Unnamed")}"',
        "api_key.revoke": f'Revoked API key "{details.get("name", "Unknown")}"',
        "share.create": f'Created share link for "{details.get("domain", "Unknown")}"',
        "share.revoke": "Revoked share link",
        "session.revoke": "Signed out a device",
        "session.revoke_all": "Signed out all other devices",
        "data.export": f'Exported {details.get("format", "data")}',
    }
    return messages.get(activity.get("type"), activity.get("type", ""))


class AccountStore:
    """Account records on top of a BlobStore."""

    def __init__(self, blob: BlobStore):
        self.blob = blob

    # Users

    def create_user(self, email: str, password_hash: str, plan: str = "pro") -> Dict[str, Any]:
        email = email.lower()
        now = utcnow()
        user = {
            "id": f"user_{uuid.uuid4().hex[:16]}",
            "email": email,
            "passwordHash": password_hash,
            "createdAt": now.isoformat(),
            "plan": plan,
            "trialEndsAt": (now + timedelta(days=settings.TRIAL_DAYS)).isoformat(),
            "subscription": None,
        }
        self.blob.set(USERS, email, user)
        self.blob.set(USERS, f"user_id_{user['id']}", email)
        logger.info(f"Created user {user['id']}")
        return user

    def get_user(self, email: str) -> Optional[Dict[str, Any]]:
        return self.blob.get(USERS, email.lower())

    def get_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        email = self.blob.get(USERS, f"user_id_{user_id}")
        if not email:
            return None
        return self.get_user(email)

    def update_user(self, email: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        user = self.get_user(email)
        if not user:
            return None
        user.update(updates)
        self.blob.set(USERS, user["email"], user)
        return user

    def delete_user(self, user: Dict[str, Any]):
        for key_id in read_index(self.blob, API_KEYS, f"user_keys_{user['id']}"):
            key = self.blob.get(API_KEYS, key_id)
            if key:
                self.blob.delete(API_KEYS, f"key_hash_{key['keyHash']}")
            self.blob.delete(API_KEYS, key_id)
        self.blob.delete(API_KEYS, f"user_keys_{user['id']}")

        for session_id in read_index(self.blob, SESSIONS, f"user_sessions_{user['id']}"):
            self.blob.delete(SESSIONS, session_id)
        self.blob.delete(SESSIONS, f"user_sessions_{user['id']}")

        for activity_id in read_index(self.blob, ACTIVITY, f"user_log_{user['id']}"):
            self.blob.delete(ACTIVITY, activity_id)
        self.blob.delete(ACTIVITY, f"user_log_{user['id']}")

        self.blob.delete(USERS, f"user_id_{user['id']}")
        self.blob.delete(USERS, user["email"])
        logger.info(f"Deleted user {user['id']}")

    # Password reset

    def create_reset_token(self, email: str) -> str:
        token = secrets.token_urlsafe(32)
        now = utcnow()
        data = {
            "email": email.lower(),
            "createdAt": now.isoformat(),
            "expiresAt": (now + timedelta(seconds=settings.RESET_TOKEN_TTL_SECONDS)).isoformat(),
        }
        self.blob.set(RESET_TOKENS, token, data, ttl=settings.RESET_TOKEN_TTL_SECONDS)
        return token

    def get_reset_token(self, token: str) -> Optional[Dict[str, Any]]:
        data = self.blob.get(RESET_TOKENS, token)
        if not data:
            return None
        if parse_iso(data["expiresAt"]) < utcnow():
            self.blob.delete(RESET_TOKENS, token)
            return None
        return data

    def delete_reset_token(self, token: str):
        self.blob.delete(RESET_TOKENS, token)

    # Login sessions

    def create_session(self, user_id: str, user_agent: Optional[str] = None, ip_address: Optional[str] = None) -> Dict[str, Any]:
        now = iso_now()
        session = {
            "id": f"sess_{uuid.uuid4().hex[:16]}",
            "userId": user_id,
            "createdAt": now,
            "lastActiveAt": now,
            "userAgent": user_agent or "Unknown",
            "ipAddress": ip_address or "Unknown",
            "device": describe_device(user_agent),
            "isActive": True,
        }
        self.blob.set(SESSIONS, session["id"], session)
        add_to_index(self.blob, SESSIONS, f"user_sessions_{user_id}", session["id"])
        return session

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.blob.get(SESSIONS, session_id)

    def touch_session(self, session: Dict[str, Any]):
        session["lastActiveAt"] = iso_now()
        self.blob.set(SESSIONS, session["id"], session)

    def get_user_sessions(self, user_id: str) -> List[Dict[str, Any]]:
        sessions = []
        for session_id in read_index(self.blob, SESSIONS, f"user_sessions_{user_id}"):
            session = self.blob.get(SESSIONS, session_id)
            if session and session.get("isActive"):
                sessions.append(session)
        sessions.sort(key=lambda s: s["lastActiveAt"], reverse=True)
        return sessions

    def revoke_session(self, session_id: str, user_id: str) -> bool:
        session = self.blob.get(SESSIONS, session_id)
        if not session or session["userId"] != user_id:
            return False
        session["isActive"] = False
        session["revokedAt"] = iso_now()
        self.blob.set(SESSIONS, session_id, session)
        return True

    def revoke_all_sessions(self, user_id: str, except_session_id: Optional[str] = None) -> int:
        revoked = 0
        for session_id in read_index(self.blob, SESSIONS, f"user_sessions_{user_id}"):
            if session_id == except_session_id:
                continue
            session = self.blob.get(SESSIONS, session_id)
            if session and session.get("isActive"):
                session["isActive"] = False
                session["revokedAt"] = iso_now()
                self.blob.set(SESSIONS, session_id, session)
                revoked += 1
        return revoked

    # API keys

    def create_api_key(self, user_id: str, name: Optional[str], permissions: List[str]) -> Dict[str, Any]:
        secret_key = f"zta_live_{uuid.uuid4().hex}"
        key_hash = hash_api_key(secret_key)
        api_key = {
            "id": f"key_{uuid.uuid4().hex[:12]}",
            "userId": user_id,
            "name": name or "Unnamed Key",
            "keyHash": key_hash,
            "keyPrefix": secret_key[:12] + "...",
            "permissions": permissions,
            "createdAt": iso_now(),
            "lastUsedAt": None,
            "isActive": True,
        }
        self.blob.set(API_KEYS, api_key["id"], api_key)
        self.blob.set(API_KEYS, f"key_hash_{key_hash}", api_key["id"])
        add_to_index(self.blob, API_KEYS, f"user_keys_{user_id}", api_key["id"])
        return {**api_key, "key": secret_key}

    def get_api_key(self, key_id: str) -> Optional[Dict[str, Any]]:
        return self.blob.get(API_KEYS, key_id)

    def get_user_api_keys(self, user_id: str) -> List[Dict[str, Any]]:
        keys = []
        for key_id in read_index(self.blob, API_KEYS, f"user_keys_{user_id}"):
            key = self.blob.get(API_KEYS, key_id)
            if key and key.get("isActive"):
                keys.append({k: v for k, v in key.items() if k != "keyHash"})
        keys.sort(key=lambda k: k["createdAt"], reverse=True)
        return keys

    def validate_api_key(self, secret_key: str) -> Optional[Dict[str, Any]]:
        if not secret_key or not secret_key.startswith("zta_"):
            return None
        key_id = self.blob.get(API_KEYS, f"key_hash_{hash_api_key(secret_key)}")
        if not key_id:
            return None
        api_key = self.blob.get(API_KEYS, key_id)
        if not api_key or not api_key.get("isActive"):
            return None
        api_key["lastUsedAt"] = iso_now()
        self.blob.set(API_KEYS, key_id, api_key)
        return api_key

    def revoke_api_key(self, key_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        api_key = self.blob.get(API_KEYS, key_id)
        if not api_key or api_key["userId"] != user_id or not api_key.get("isActive"):
            return None
        api_key["isActive"] = False
        api_key["revokedAt"] = iso_now()
        self.blob.set(API_KEYS, key_id, api_key)
        self.blob.delete(API_KEYS, f"key_hash_{api_key['keyHash']}")
        return api_key

    def rename_api_key(self, key_id: str, user_id: str, name: str) -> Optional[Dict[str, Any]]:
        api_key = self.blob.get(API_KEYS, key_id)
        if not api_key or api_key["userId"] != user_id or not api_key.get("isActive"):
            return None
        api_key["name"] = name
        self.blob.set(API_KEYS, key_id, api_key)
        return {k: v for k, v in api_key.items() if k != "keyHash"}

    # Activity log

    def log_activity(
        self,
        user_id: str,
        activity_type: str,
        details: Optional[Dict[str, Any]] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        if activity_type not in ACTIVITY_TYPES:
            raise ValueError(f"Unknown activity type: {activity_type}")
        activity = {
            "id": f"act_{uuid.uuid4().hex[:16]}",
            "userId": user_id,
            "type": activity_type,
            "details": details or {},
            "userAgent": user_agent or "Unknown",
            "timestamp": iso_now(),
        }
        self.blob.set(ACTIVITY, activity["id"], activity)
        index_key = f"user_log_{user_id}"
        previous = read_index(self.blob, ACTIVITY, index_key)
        kept = add_to_index(self.blob, ACTIVITY, index_key, activity["id"], limit=ACTIVITY_LIMIT, prepend=True)
        for evicted in set(previous) - set(kept):
            self.blob.delete(ACTIVITY, evicted)
        return activity

    def get_activity_log(self, user_id: str, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        activity_ids = read_index(self.blob, ACTIVITY, f"user_log_{user_id}")
        activities = []
        for activity_id in activity_ids[offset:offset + limit]:
            activity = self.blob.get(ACTIVITY, activity_id)
            if activity:
                activities.append({**activity, "message": format_activity_message(activity)})
        return {
            "activities": activities,
            "total": len(activity_ids),
            "hasMore": offset + limit < len(activity_ids),
        }
