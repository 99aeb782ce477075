from typing import List, Optional
from pydantic import EmailStr
from sqlmodel import SQLModel, Field

PLANS = ("solo", "starter", "pro", "business")

class RegisterRequest(SQLModel):
    """
    Body of POST /api/auth/register.
    """
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    plan: Optional[str] = None

class LoginRequest(SQLModel):
    email: Optional[str] = None
    password: Optional[str] = None

class ForgotPasswordRequest(SQLModel):
    email: Optional[str] = None

class ResetPasswordRequest(SQLModel):
    token: Optional[str] = None
    password: Optional[str] = None

class DeleteAccountRequest(SQLModel):
    password: Optional[str] = None
    confirm: Optional[str] = None

class ApiKeyCreate(SQLModel):
    name: Optional[str] = Field(default=None, max_length=100)
    permissions: List[str] = ["read"]

class ApiKeyUpdate(SQLModel):
    keyId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
