"""Authorization chain: identity extraction, role gates and ownership gates.

Every gate is a pure function over the request's credential and the decoded
identity, wrapped as a FastAPI dependency. Gates never touch the database;
access tokens are self-contained.
"""
from dataclasses import dataclass
from typing import Iterable, Optional
import logging

from fastapi import Depends, Request
from passlib.context import CryptContext
from sqlmodel import select

from .errors import AuthenticationFailure, AuthorizationFailure
from .metrics import AUTH_FAILURES
from .models import Role, User
from .tokens import Credential, InvalidToken, TokenService, TokenType, get_token_service

logger = logging.getLogger("app.auth")

# Use pbkdf2_sha256 here to avoid requiring a working bcrypt C-extension
# in test environments.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass(frozen=True)
class Identity:
    """Caller identity decoded from an access token."""

    id: int
    email: str
    role: Role

    @property
    def is_elevated(self) -> bool:
        return self.role.is_elevated


@dataclass
class AccessContext:
    """Outcome of the owner-or-elevated gate.

    When `check_ownership` is set the route must call `assert_owns` once it
    has loaded the resource.
    """

    identity: Identity
    check_ownership: bool

    def assert_owns(self, owner_email: Optional[str]) -> None:
        if not self.check_ownership:
            return
        if not owner_email or normalize_email(owner_email) != normalize_email(self.identity.email):
            raise AuthorizationFailure("You do not have access to this resource")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def extract_token(authorization: Optional[str]) -> Optional[str]:
    """Accept either `Bearer <token>` or the raw token."""
    if not authorization:
        return None
    parts = authorization.strip().split(None, 1)
    if not parts:
        return None
    if parts[0].lower() == "bearer":
        value = parts[1] if len(parts) > 1 else ""
    else:
        value = " ".join(parts)
    value = value.strip().strip("'\"")
    return value or None


def identity_from_credential(credential: Credential) -> Identity:
    principal_id = credential.principal_id
    if principal_id is None or not credential.email or credential.role is None:
        raise AuthenticationFailure("malformed", "Invalid authentication credentials")
    return Identity(id=principal_id, email=credential.email, role=credential.role)


def resolve_identity(authorization: Optional[str], tokens: TokenService) -> Identity:
    """Authenticate gate: header -> verified access credential -> identity."""
    token = extract_token(authorization)
    if token is None:
        AUTH_FAILURES.labels(reason="missing").inc()
        raise AuthenticationFailure("missing", "No authorization header provided")

    result = tokens.verify(token, expected_type=TokenType.ACCESS)
    if isinstance(result, InvalidToken):
        AUTH_FAILURES.labels(reason=result.reason.value).inc()
        logger.info("Rejected credential: %s", result.reason.value)
        raise AuthenticationFailure(result.reason.value, result.message)
    return identity_from_credential(result)


def check_roles(identity: Optional[Identity], allowed: Iterable[Role]) -> Identity:
    allowed = frozenset(Role(r) for r in allowed)
    if identity is None:
        raise AuthenticationFailure("missing", "Authentication required")
    if identity.role not in allowed:
        names = " or ".join(sorted(r.value for r in allowed))
        raise AuthorizationFailure(f"Access denied. Required role: {names}")
    return identity


def check_min_role(identity: Optional[Identity], minimum: Role) -> Identity:
    if identity is None:
        raise AuthenticationFailure("missing", "Authentication required")
    if not identity.role.at_least(Role(minimum)):
        raise AuthorizationFailure(f"Insufficient permissions. Minimum role required: {Role(minimum).value}")
    return identity


def ownership_context(identity: Optional[Identity]) -> AccessContext:
    if identity is None:
        raise AuthenticationFailure("missing", "Authentication required")
    return AccessContext(identity=identity, check_ownership=not identity.is_elevated)


async def authenticate(request: Request, tokens: TokenService = Depends(get_token_service)) -> Identity:
    identity = resolve_identity(request.headers.get("authorization"), tokens)
    request.state.identity = identity
    return identity


async def optional_authenticate(
    request: Request, tokens: TokenService = Depends(get_token_service)
) -> Optional[Identity]:
    """Attach identity when a valid access token is present; otherwise continue anonymously."""
    identity = None
    if request.headers.get("authorization"):
        try:
            identity = resolve_identity(request.headers.get("authorization"), tokens)
        except AuthenticationFailure as exc:
            logger.debug("Optional auth continuing anonymously: %s", exc.reason)
    request.state.identity = identity
    return identity


def require_role(*roles: Role):
    async def role_checker(identity: Identity = Depends(authenticate)) -> Identity:
        return check_roles(identity, roles)

    return role_checker


def require_min_role(minimum: Role):
    async def rank_checker(identity: Identity = Depends(authenticate)) -> Identity:
        return check_min_role(identity, minimum)

    return rank_checker


def require_owner_or_elevated():
    async def ownership_checker(identity: Identity = Depends(authenticate)) -> AccessContext:
        return ownership_context(identity)

    return ownership_checker


require_admin = require_min_role(Role.ADMIN)
require_superadmin = require_min_role(Role.SUPERADMIN)


async def get_user_by_email(session, email: str) -> Optional[User]:
    result = await session.exec(select(User).where(User.email == normalize_email(email)))
    return result.first()


async def authenticate_user(session, email: str, password: str) -> Optional[User]:
    user = await get_user_by_email(session, email)
    if not user or not user.password_hash:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


async def create_user(
    session,
    email: str,
    password: str,
    name: Optional[str] = None,
    role: Role = Role.USER,
    email_verified: bool = False,
) -> User:
    """Create a principal with a hashed password. Returns the created User."""
    user = User(
        email=normalize_email(email),
        password_hash=get_password_hash(password),
        name=name,
        role=Role(role).value,
        email_verified=email_verified,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user
