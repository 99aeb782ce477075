import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel

from zta.api.security import (
    AuthContext,
    client_ip,
    create_token,
    get_current_user,
    hash_password,
    verify_password,
)
from zta.config import settings
from zta.errors import AuthError, ConflictError, ValidationError
from zta.limiter import limiter
from zta.models import PLANS, ForgotPasswordRequest, LoginRequest, RegisterRequest, ResetPasswordRequest
from zta.storage import AccountStore, get_accounts

router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"]
)

logger = logging.getLogger("ZTA.Auth")

MIN_PASSWORD_LENGTH = 8


class ChangePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "plan": user.get("plan"),
        "createdAt": user.get("createdAt"),
        "trialEndsAt": user.get("trialEndsAt"),
    }


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.REGISTER_RATELIMIT)
def register(
    request: Request,
    body: RegisterRequest,
    accounts: AccountStore = Depends(get_accounts),
):
    """
    Create an account. New accounts start a free trial on the chosen plan.
    """
    if body.plan and body.plan not in PLANS:
        raise ValidationError(f"Invalid plan. Use one of: {', '.join(PLANS)}")
    if accounts.get_user(body.email):
        raise ConflictError("Email already registered")

    user = accounts.create_user(body.email, hash_password(body.password), body.plan or "pro")
    session = accounts.create_session(user["id"], request.headers.get("user-agent"), client_ip(request))
    return {"success": True, "token": create_token(user, session["id"]), "user": public_user(user)}


@router.post("/login")
@limiter.limit(settings.LOGIN_RATELIMIT)
def login(
    request: Request,
    body: LoginRequest,
    accounts: AccountStore = Depends(get_accounts),
):
    if not body.email or not body.password:
        raise ValidationError("Email and password required")

    user = accounts.get_user(body.email)
    # Same error for unknown email and wrong password
    if not user or not verify_password(body.password, user["passwordHash"]):
        logger.info("Failed login attempt")
        raise AuthError("Invalid credentials")

    user_agent = request.headers.get("user-agent")
    session = accounts.create_session(user["id"], user_agent, client_ip(request))
    accounts.log_activity(user["id"], "auth.login", {}, user_agent)
    return {"success": True, "token": create_token(user, session["id"]), "user": public_user(user)}


@router.post("/logout")
def logout(
    request: Request,
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    if auth.session_id:
        accounts.revoke_session(auth.session_id, auth.id)
    accounts.log_activity(auth.id, "auth.logout", {}, request.headers.get("user-agent"))
    return {"success": True}


@router.post("/forgot")
@limiter.limit(settings.PASSWORD_RESET_RATELIMIT)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    accounts: AccountStore = Depends(get_accounts),
):
    """
    Starts a password reset. The response is identical whether or not the
    account exists.
    """
    if not body.email:
        raise ValidationError("Email required")

    user = accounts.get_user(body.email)
    if user:
        accounts.create_reset_token(user["email"])
        # Outbound email is not wired up; the token only lives in the store
        logger.info(f"Password reset token issued for {user['id']}")

    return {"success": True, "message": "If an account exists with that email, a reset link has been sent."}


@router.get("/verify-reset-token")
def verify_reset_token(
    token: Optional[str] = Query(None),
    accounts: AccountStore = Depends(get_accounts),
):
    if not token:
        raise ValidationError("Token required")
    data = accounts.get_reset_token(token)
    if not data:
        raise ValidationError("Invalid or expired reset token")
    return {"valid": True, "email": mask_email(data["email"])}


@router.post("/reset")
@limiter.limit(settings.PASSWORD_RESET_RATELIMIT)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    accounts: AccountStore = Depends(get_accounts),
):
    """
    Sets a new password from a reset token. Every existing session and
    token of the account stops working.
    """
    if not body.token or not body.password:
        raise ValidationError("Token and password required")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    data = accounts.get_reset_token(body.token)
    if not data:
        raise ValidationError("Invalid or expired reset token")
    user = accounts.get_user(data["email"])
    if not user:
        raise ValidationError("Invalid or expired reset token")

    accounts.update_user(user["email"], {
        "passwordHash": hash_password(body.password),
        "tokenInvalidatedAt": time.time(),
    })
    accounts.revoke_all_sessions(user["id"])
    accounts.delete_reset_token(body.token)
    accounts.log_activity(user["id"], "auth.password_reset", {}, request.headers.get("user-agent"))
    return {"success": True, "message": "Password has been reset. Please log in."}


@router.post("/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    auth: AuthContext = Depends(get_current_user),
    accounts: AccountStore = Depends(get_accounts),
):
    """
    Changes the password of the signed-in user. Other sessions are signed
    out and a fresh token is returned for this one.
    """
    if not body.currentPassword or not body.newPassword:
        raise ValidationError("Current and new password required")
    if len(body.newPassword) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not verify_password(body.currentPassword, auth.user["passwordHash"]):
        raise AuthError("Current password is incorrect")

    user = accounts.update_user(auth.email, {
        "passwordHash": hash_password(body.newPassword),
        "tokenInvalidatedAt": time.time(),
    })
    accounts.revoke_all_sessions(auth.id, except_session_id=auth.session_id)
    accounts.log_activity(auth.id, "auth.password_change", {}, request.headers.get("user-agent"))
    return {"success": True, "token": create_token(user, auth.session_id)}
