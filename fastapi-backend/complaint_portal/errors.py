"""Error taxonomy shared by the authorization chain and the escalation engine."""

from typing import Optional

from fastapi import HTTPException, status


class AuthenticationFailure(HTTPException):
    """Missing, forged, expired or wrong-type credential (401).

    Clients use the `X-Auth-Reason` header to decide between silently
    refreshing (`expired`) and forcing a new login (anything else).
    """

    def __init__(self, reason: str, detail: str = "Not authenticated"):
        self.reason = reason
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"X-Auth-Reason": reason, "WWW-Authenticate": "Bearer"},
        )


class AuthorizationFailure(HTTPException):
    """Valid identity lacking the required role or ownership (403)."""

    def __init__(self, detail: str = "Insufficient privileges"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class PersistenceFailure(Exception):
    """A store operation failed for a single complaint."""

    def __init__(self, complaint_id: Optional[int], message: str):
        self.complaint_id = complaint_id
        super().__init__(f"complaint {complaint_id}: {message}")


class SweepInProgress(Exception):
    """An escalation sweep is already running; the caller must not queue another."""


__all__ = [
    "AuthenticationFailure",
    "AuthorizationFailure",
    "PersistenceFailure",
    "SweepInProgress",
]
