#!/usr/bin/env python3
"""
Create (or promote) a superadmin in the configured DATABASE_URL and print an access token.

Optional environment variables:
- SUPERADMIN_NAME
- SUPERADMIN_EMAIL
- SUPERADMIN_PASSWORD

Uses the application's own modules so hashing, whitelisting and tokens match
the running backend.
"""
import asyncio
import os
import secrets
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "fastapi-backend"))

from complaint_portal.bootstrap import ensure_superadmin  # noqa: E402
from complaint_portal.database import async_session_factory, init_db  # noqa: E402
from complaint_portal.tokens import get_token_service  # noqa: E402


async def main():
    name = os.environ.get("SUPERADMIN_NAME", "Portal Superadmin")
    email = os.environ.get("SUPERADMIN_EMAIL", f"superadmin-{secrets.token_hex(4)}@example.com")
    password = os.environ.get("SUPERADMIN_PASSWORD") or secrets.token_urlsafe(12)

    await init_db()
    async with async_session_factory() as session:
        user, created = await ensure_superadmin(session, email, password, name=name)

    print("SUPERADMIN_CREATED" if created else "SUPERADMIN_PROMOTED")
    print(f"id: {user.id}")
    print(f"email: {user.email}")
    if created:
        print(f"password: {password}")
    print(f"access_token: {get_token_service().issue_access(user)}")


if __name__ == "__main__":
    asyncio.run(main())
