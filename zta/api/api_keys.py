import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from zta.api.security import AuthContext, get_current_user
from zta.errors import ForbiddenError, NotFoundError, ValidationError
from zta.models import ApiKeyCreate, ApiKeyUpdate
from zta.storage import AccountStore, get_accounts
from zta.storage.accounts import API_KEY_PERMISSIONS

router = APIRouter(
    prefix="/api/keys",
    tags=["API Keys"]
)

logger = logging.getLogger("ZTA.ApiKeys")

MAX_KEYS_PER_USER = 10


def require_login(auth: AuthContext):
    # API keys cannot be used to mint or revoke API keys
    if auth.api_key is not None:
        raise ForbiddenError("API keys cannot manage API keys")


@router.get("")
def list_api_keys(
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    return {"keys": accounts.get_user_api_keys(auth.id)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    """
    Creates an API key. The full key is only returned here; afterwards
    only its prefix is shown.
    """
    require_login(auth)
    permissions = list(dict.fromkeys(body.permissions or ["read"]))
    invalid = [p for p in permissions if p not in API_KEY_PERMISSIONS]
    if invalid:
        raise ValidationError(f"Invalid permissions. Use any of: {', '.join(API_KEY_PERMISSIONS)}")
    if len(accounts.get_user_api_keys(auth.id)) >= MAX_KEYS_PER_USER:
        raise ValidationError(f"Maximum of {MAX_KEYS_PER_USER} API keys reached")

    api_key = accounts.create_api_key(auth.id, (body.name or "").strip() or None, permissions)
    accounts.log_activity(auth.id, "api_key.create", {"name": api_key["name"]}, request.headers.get("user-agent"))
    key = {k: v for k, v in api_key.items() if k != "keyHash"}
    return {
        "success": True,
        "key": key,
        "message": "Copy this key now. It will not be shown again.",
    }


@router.patch("")
def rename_api_key(
    body: ApiKeyUpdate,
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    require_login(auth)
    if not body.keyId:
        raise ValidationError("Key ID required")
    if not body.name or not body.name.strip():
        raise ValidationError("Name required")
    api_key = accounts.rename_api_key(body.keyId, auth.id, body.name.strip())
    if not api_key:
        raise NotFoundError("API key")
    return {"success": True, "key": api_key}


@router.delete("")
def revoke_api_key(
    request: Request,
    keyId: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    require_login(auth)
    if not keyId:
        raise ValidationError("Key ID required")
    api_key = accounts.revoke_api_key(keyId, auth.id)
    if not api_key:
        raise NotFoundError("API key")
    accounts.log_activity(auth.id, "api_key.revoke", {"name": api_key["name"]}, request.headers.get("user-agent"))
    return {"success": True}
