"""Issue and verify signed, typed, time-limited credentials.

Tokens are self-contained HS256 JWTs: verifying one needs only the shared
secret and the current time. Verification never raises for a bad token; it
returns an `InvalidToken` whose reason lets callers tell an expired session
(refresh silently) from a forged or misused one (force a new login).
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Optional, Union

from jose import jwt, JWTError

from .config import Settings, get_settings
from .models import Role
from .time_utils import utcnow

logger = logging.getLogger("app.tokens")


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


SINGLE_USE_TYPES = frozenset({TokenType.EMAIL_VERIFICATION, TokenType.PASSWORD_RESET})


class InvalidReason(str, Enum):
    MALFORMED = "malformed"
    EXPIRED = "expired"
    WRONG_TYPE = "wrong_type"


@dataclass(frozen=True)
class Credential:
    """Decoded, verified token claims."""

    type: TokenType
    email: Optional[str]
    expires_at: datetime
    subject: Optional[str] = None
    role: Optional[Role] = None
    issued_at: Optional[datetime] = None
    jti: Optional[str] = None

    @property
    def principal_id(self) -> Optional[int]:
        if self.subject is None:
            return None
        try:
            return int(self.subject)
        except ValueError:
            return None


@dataclass(frozen=True)
class InvalidToken:
    reason: InvalidReason
    message: str


TokenResult = Union[Credential, InvalidToken]


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenService:
    """Stateless issuer/verifier bound to one secret and set of lifetimes."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_lifetime: timedelta = timedelta(hours=24),
        refresh_lifetime: timedelta = timedelta(days=7),
        single_use_lifetime: timedelta = timedelta(hours=24),
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self._algorithm = algorithm
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime
        self.single_use_lifetime = single_use_lifetime

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            access_lifetime=timedelta(hours=settings.access_token_hours),
            refresh_lifetime=timedelta(days=settings.refresh_token_days),
            single_use_lifetime=timedelta(hours=settings.single_use_token_hours),
        )

    def _encode(self, claims: dict[str, Any], lifetime: timedelta, now: Optional[datetime]) -> str:
        issued = now or utcnow()
        to_encode = dict(claims)
        to_encode.update(
            {
                "iat": int(issued.timestamp()),
                "exp": int((issued + lifetime).timestamp()),
                "jti": secrets.token_urlsafe(16),
            }
        )
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def issue_access(self, principal, now: Optional[datetime] = None) -> str:
        role = Role.parse(principal.role) or Role.USER
        claims = {
            "sub": str(principal.id),
            "email": principal.email,
            "role": role.value,
            "type": TokenType.ACCESS.value,
        }
        return self._encode(claims, self.access_lifetime, now)

    def issue_refresh(self, principal, now: Optional[datetime] = None) -> str:
        # No role claim: authorization must never be derived from a refresh token.
        claims = {
            "sub": str(principal.id),
            "email": principal.email,
            "type": TokenType.REFRESH.value,
        }
        return self._encode(claims, self.refresh_lifetime, now)

    def issue_pair(self, principal, now: Optional[datetime] = None) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access(principal, now=now),
            refresh_token=self.issue_refresh(principal, now=now),
        )

    def issue_single_use(self, purpose: TokenType, subject_email: str, now: Optional[datetime] = None) -> str:
        purpose = TokenType(purpose)
        if purpose not in SINGLE_USE_TYPES:
            raise ValueError(f"{purpose.value} is not a single-use token type")
        claims = {"email": subject_email, "type": purpose.value}
        return self._encode(claims, self.single_use_lifetime, now)

    def verify(
        self,
        token: Optional[str],
        expected_type: Optional[TokenType] = None,
        now: Optional[datetime] = None,
    ) -> TokenResult:
        """Validate signature, expiry and (optionally) type of `token`."""
        if not token:
            return InvalidToken(InvalidReason.MALFORMED, "Empty token")
        try:
            # Expiry is checked below against the caller's clock so verification
            # stays a pure function of (token, now).
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Rejected token with invalid signature or encoding: %s", exc)
            return InvalidToken(InvalidReason.MALFORMED, "Invalid token")

        try:
            token_type = TokenType(payload.get("type"))
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError):
            return InvalidToken(InvalidReason.MALFORMED, "Token is missing required claims")

        current = now or utcnow()
        if current >= expires_at:
            return InvalidToken(InvalidReason.EXPIRED, "Token has expired")

        if expected_type is not None and token_type != TokenType(expected_type):
            return InvalidToken(
                InvalidReason.WRONG_TYPE,
                f"Expected a {TokenType(expected_type).value} token, got {token_type.value}",
            )

        issued_at = payload.get("iat")
        return Credential(
            type=token_type,
            email=payload.get("email"),
            expires_at=expires_at,
            subject=payload.get("sub"),
            role=Role.parse(payload.get("role")) if token_type == TokenType.ACCESS else None,
            issued_at=datetime.fromtimestamp(int(issued_at), tz=timezone.utc) if issued_at is not None else None,
            jti=payload.get("jti"),
        )


@lru_cache()
def get_token_service() -> TokenService:
    return TokenService.from_settings(get_settings())


__all__ = [
    "Credential",
    "InvalidReason",
    "InvalidToken",
    "TokenPair",
    "TokenResult",
    "TokenService",
    "TokenType",
    "get_token_service",
]
