"""Bootstrap the first superadmin.

Role elevation over HTTP requires an existing superadmin, so the first one is
created out of band (see `scripts/create_superadmin.py`).
"""
import logging
from typing import Optional, Tuple

from sqlmodel import select

from . import auth
from .models import AccountStatus, AdminWhitelist, Role, User
from .time_utils import utcnow

logger = logging.getLogger("app.bootstrap")


async def ensure_superadmin(
    session, email: str, password: str, name: Optional[str] = None
) -> Tuple[User, bool]:
    """Create or promote `email` to an active superadmin and whitelist it.

    Returns (user, created). An existing account keeps its password.
    """
    email = auth.normalize_email(email)

    entry = await session.exec(select(AdminWhitelist).where(AdminWhitelist.email == email))
    if not entry.first():
        session.add(AdminWhitelist(email=email))
        await session.commit()

    user = await auth.get_user_by_email(session, email)
    if user is None:
        user = await auth.create_user(
            session, email, password, name=name, role=Role.SUPERADMIN, email_verified=True
        )
        logger.info("Superadmin created", extra={"user_id": user.id})
        return user, True

    user.role = Role.SUPERADMIN.value
    user.status = AccountStatus.ACTIVE.value
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("Existing account promoted to superadmin", extra={"user_id": user.id})
    return user, False
