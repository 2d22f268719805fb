"""Request/response models shared by the route modules."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, constr

from ..models import Priority, User


class PrincipalPublic(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str
    status: str
    email_verified: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "PrincipalPublic":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            status=user.status,
            email_verified=user.email_verified,
            last_login=user.last_login,
            created_at=user.created_at,
        )


class SignupRequest(BaseModel):
    email: EmailStr
    password: constr(min_length=8)
    name: Optional[constr(strip_whitespace=True, max_length=255)] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: constr(min_length=8)


class ResendVerificationRequest(BaseModel):
    email: EmailStr


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: constr(min_length=8)


class ComplaintCreate(BaseModel):
    category: constr(strip_whitespace=True, min_length=1, max_length=50)
    description: constr(strip_whitespace=True, min_length=1)
    priority: Priority = Priority.LOW
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    is_anonymous: bool = False


class StatusUpdate(BaseModel):
    status: str
    admin_message: Optional[str] = None


class AssignmentUpdate(BaseModel):
    assigned_to: int = Field(..., gt=0)


class RoleUpdate(BaseModel):
    role: str


class AccountStatusUpdate(BaseModel):
    status: str


class WhitelistEntryCreate(BaseModel):
    email: EmailStr
