from enum import Enum
from typing import Optional
from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, Field

from .time_utils import utcnow


def _timestamp_column(nullable: bool = True) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class Role(str, Enum):
    """Closed set of principal roles, totally ordered by privilege."""

    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    @property
    def is_elevated(self) -> bool:
        return self.rank >= Role.ADMIN.rank

    def at_least(self, minimum: "Role") -> bool:
        return self.rank >= minimum.rank

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Role"]:
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


_ROLE_RANKS = {Role.USER: 1, Role.ADMIN: 2, Role.SUPERADMIN: 3}


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Priority(str, Enum):
    """Complaint priority, ordered by urgency."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3}


class ComplaintStatus(str, Enum):
    """Complaint lifecycle; transitions only ever move forward."""

    NEW = "new"
    UNDER_REVIEW = "under-review"
    RESOLVED = "resolved"

    @property
    def rank(self) -> int:
        return _STATUS_RANKS[self]


_STATUS_RANKS = {ComplaintStatus.NEW: 0, ComplaintStatus.UNDER_REVIEW: 1, ComplaintStatus.RESOLVED: 2}


class User(SQLModel, table=True):
    __tablename__ = "users"
    id: Optional[int] = Field(default=None, primary_key=True)
    # Stored lower-cased; see auth.normalize_email.
    email: str = Field(index=True, sa_column_kwargs={"unique": True})
    password_hash: str
    name: Optional[str] = None
    role: str = Field(default=Role.USER.value, index=True)
    status: str = Field(default=AccountStatus.ACTIVE.value)
    email_verified: bool = Field(default=False)
    last_login: Optional[datetime] = Field(default=None, sa_column=_timestamp_column())
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=_timestamp_column(False))
    updated_at: Optional[datetime] = Field(default=None, sa_column=_timestamp_column())


class Complaint(SQLModel, table=True):
    __tablename__ = "complaints"
    id: Optional[int] = Field(default=None, primary_key=True)
    category: str
    description: str
    # Owning principal, matched by email. NULL for anonymous submissions.
    email: Optional[str] = Field(default=None, index=True)
    name: Optional[str] = None
    is_anonymous: bool = Field(default=False)
    priority: str = Field(default=Priority.LOW.value)
    status: str = Field(default=ComplaintStatus.NEW.value, index=True)
    admin_message: Optional[str] = None
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=_timestamp_column(False))
    resolved_at: Optional[datetime] = Field(default=None, sa_column=_timestamp_column())
    # Escalation fields are written exclusively by the escalation engine.
    escalation_level: int = Field(default=0)
    escalated_at: Optional[datetime] = Field(default=None, sa_column=_timestamp_column())
    assigned_to: Optional[int] = Field(default=None, foreign_key="users.id")
    assigned_at: Optional[datetime] = Field(default=None, sa_column=_timestamp_column())


class EscalationHistory(SQLModel, table=True):
    """Append-only audit trail; one row per escalation level reached."""
    __tablename__ = "escalation_history"
    id: Optional[int] = Field(default=None, primary_key=True)
    complaint_id: int = Field(foreign_key="complaints.id", index=True)
    escalation_level: int
    reason: str
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=_timestamp_column(False))


class StatusHistory(SQLModel, table=True):
    __tablename__ = "status_history"
    id: Optional[int] = Field(default=None, primary_key=True)
    complaint_id: int = Field(foreign_key="complaints.id", index=True)
    old_status: Optional[str] = None
    new_status: str
    changed_by: Optional[str] = None
    notes: Optional[str] = None
    changed_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=_timestamp_column(False))


class AdminWhitelist(SQLModel, table=True):
    __tablename__ = "admin_whitelist"
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(sa_column_kwargs={"unique": True})
    added_by: Optional[int] = Field(default=None, foreign_key="users.id")
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=_timestamp_column(False))


class ConsumedToken(SQLModel, table=True):
    """Redeemed single-use credentials (email verification, password reset)."""
    __tablename__ = "consumed_tokens"
    id: Optional[int] = Field(default=None, primary_key=True)
    jti: str = Field(sa_column_kwargs={"unique": True})
    purpose: str
    email: str
    consumed_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=_timestamp_column(False))
