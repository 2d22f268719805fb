"""Administrator routes: escalation visibility, user roles and the admin whitelist."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .. import auth
from ..auth import Identity
from ..database import get_session
from ..dependencies import get_escalation_engine, get_scheduler
from ..errors import SweepInProgress
from ..escalation import EscalationEngine
from ..models import AccountStatus, AdminWhitelist, Complaint, Role, User
from ..scheduler import EscalationScheduler
from ..time_utils import utcnow
from .complaints import complaint_payload
from .schemas import AccountStatusUpdate, PrincipalPublic, RoleUpdate, WhitelistEntryCreate

logger = logging.getLogger("app.routes.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/escalation-stats")
async def escalation_stats(
    identity: Identity = Depends(auth.require_admin),
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    return await engine.escalation_stats()


@router.post("/trigger-escalation")
async def trigger_escalation(
    identity: Identity = Depends(auth.require_admin),
    scheduler: EscalationScheduler = Depends(get_scheduler),
):
    logger.info("Manual escalation requested", extra={"user_id": identity.id})
    try:
        result = await scheduler.trigger()
    except SweepInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"message": "Escalation check completed", **result.to_dict()}


@router.get("/escalated-complaints")
async def escalated_complaints(
    identity: Identity = Depends(auth.require_admin),
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    return [complaint_payload(c) for c in await engine.escalated_complaints()]


@router.get("/complaints/{complaint_id}/escalation-history")
async def escalation_history(
    complaint_id: int,
    identity: Identity = Depends(auth.require_admin),
    session=Depends(get_session),
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    if not await session.get(Complaint, complaint_id):
        raise HTTPException(status_code=404, detail="Complaint not found")
    return await engine.history_for(complaint_id)


@router.get("/users", response_model=List[PrincipalPublic])
async def list_users(identity: Identity = Depends(auth.require_admin), session=Depends(get_session)):
    result = await session.exec(select(User).order_by(User.created_at.desc()))
    return [PrincipalPublic.from_user(u) for u in result.all()]


async def _get_other_user(session, user_id: int, identity: Identity) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.id == identity.id:
        raise HTTPException(status_code=400, detail="You cannot change your own account")
    return user


@router.put("/users/{user_id}/role", response_model=PrincipalPublic)
async def update_user_role(
    user_id: int,
    payload: RoleUpdate,
    identity: Identity = Depends(auth.require_superadmin),
    session=Depends(get_session),
):
    role = Role.parse(payload.role)
    if role is None:
        raise HTTPException(status_code=400, detail="Invalid role")

    user = await _get_other_user(session, user_id, identity)
    if role.is_elevated:
        entry = await session.exec(select(AdminWhitelist).where(AdminWhitelist.email == user.email))
        if not entry.first():
            raise HTTPException(status_code=403, detail="Email is not on the admin whitelist")

    user.role = role.value
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    # Existing access tokens keep their old role claim until they expire;
    # a refresh picks up the new role immediately.
    logger.info("User role updated", extra={"user_id": user.id, "role": role.value, "changed_by": identity.id})
    return PrincipalPublic.from_user(user)


@router.patch("/users/{user_id}/status", response_model=PrincipalPublic)
async def update_user_status(
    user_id: int,
    payload: AccountStatusUpdate,
    identity: Identity = Depends(auth.require_superadmin),
    session=Depends(get_session),
):
    try:
        new_status = AccountStatus(payload.status)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid status")

    user = await _get_other_user(session, user_id, identity)
    user.status = new_status.value
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("User status updated", extra={"user_id": user.id, "status": new_status.value})
    return PrincipalPublic.from_user(user)


@router.get("/admin-whitelist")
async def list_whitelist(identity: Identity = Depends(auth.require_superadmin), session=Depends(get_session)):
    result = await session.exec(select(AdminWhitelist).order_by(AdminWhitelist.created_at.desc()))
    return list(result.all())


@router.post("/admin-whitelist", status_code=status.HTTP_201_CREATED)
async def add_to_whitelist(
    payload: WhitelistEntryCreate,
    identity: Identity = Depends(auth.require_superadmin),
    session=Depends(get_session),
):
    entry = AdminWhitelist(email=auth.normalize_email(payload.email), added_by=identity.id)
    session.add(entry)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=409, detail="Email already whitelisted")
    await session.refresh(entry)
    return entry


@router.delete("/admin-whitelist/{email}")
async def remove_from_whitelist(
    email: str,
    identity: Identity = Depends(auth.require_superadmin),
    session=Depends(get_session),
):
    result = await session.exec(select(AdminWhitelist).where(AdminWhitelist.email == auth.normalize_email(email)))
    entry = result.first()
    if not entry:
        raise HTTPException(status_code=404, detail="Email not found in whitelist")
    await session.delete(entry)
    await session.commit()
    return {"message": "Email removed from whitelist"}
