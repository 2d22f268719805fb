"""Complaint routes: submission, owner views and admin status/assignment updates."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import select

from .. import auth
from ..auth import AccessContext, Identity
from ..database import get_session
from ..dependencies import get_notifier
from ..models import AccountStatus, Complaint, ComplaintStatus, Role, StatusHistory, User
from ..notifier import Notifier
from ..sla import check_sla_breach, sla_deadline
from ..time_utils import utcnow
from .schemas import AssignmentUpdate, ComplaintCreate, StatusUpdate

logger = logging.getLogger("app.routes.complaints")

router = APIRouter(prefix="/api/complaints", tags=["complaints"])


def complaint_payload(complaint: Complaint) -> Dict[str, Any]:
    """Serialize a complaint with its current SLA position."""
    data = complaint.model_dump()
    check = check_sla_breach(complaint.created_at, complaint.priority)
    data["sla"] = {
        "limit_hours": check.sla_limit,
        "deadline": sla_deadline(complaint.created_at, complaint.priority).isoformat(),
        "hours_elapsed": check.hours_elapsed,
        "breached": check.breached and complaint.status != ComplaintStatus.RESOLVED.value,
    }
    return data


async def _get_complaint_or_404(session, complaint_id: int) -> Complaint:
    complaint = await session.get(Complaint, complaint_id)
    if not complaint:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return complaint


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_complaint(
    payload: ComplaintCreate,
    identity: Optional[Identity] = Depends(auth.optional_authenticate),
    session=Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    if identity is not None:
        # Authenticated submissions are always owned by the caller.
        email = identity.email
    elif payload.is_anonymous or not payload.email:
        email = None
    else:
        email = auth.normalize_email(payload.email)

    complaint = Complaint(
        category=payload.category,
        description=payload.description,
        priority=payload.priority.value,
        name=None if payload.is_anonymous else payload.name,
        email=email,
        is_anonymous=payload.is_anonymous,
    )
    session.add(complaint)
    await session.commit()
    await session.refresh(complaint)

    logger.info("Complaint submitted", extra={"complaint_id": complaint.id, "priority": complaint.priority})
    notifier.notify_submission(complaint)
    return {"message": "Complaint submitted successfully", "id": complaint.id}


@router.get("/mine")
async def my_complaints(identity: Identity = Depends(auth.authenticate), session=Depends(get_session)) -> List[dict]:
    stmt = (
        select(Complaint)
        .where(Complaint.email == auth.normalize_email(identity.email))
        .order_by(Complaint.created_at.desc())
    )
    result = await session.exec(stmt)
    return [complaint_payload(c) for c in result.all()]


@router.get("/{complaint_id}")
async def get_complaint(
    complaint_id: int,
    access: AccessContext = Depends(auth.require_owner_or_elevated()),
    session=Depends(get_session),
):
    complaint = await _get_complaint_or_404(session, complaint_id)
    access.assert_owns(complaint.email)
    return complaint_payload(complaint)


@router.patch("/{complaint_id}/status")
async def update_status(
    complaint_id: int,
    payload: StatusUpdate,
    identity: Identity = Depends(auth.require_admin),
    session=Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    try:
        new_status = ComplaintStatus(payload.status)
    except ValueError:
        allowed = ", ".join(s.value for s in ComplaintStatus)
        raise HTTPException(status_code=400, detail=f"Invalid status. Allowed: {allowed}")

    complaint = await _get_complaint_or_404(session, complaint_id)
    old_status = ComplaintStatus(complaint.status)
    if new_status.rank <= old_status.rank:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot change status from {old_status.value} to {new_status.value}",
        )

    now = utcnow()
    complaint.status = new_status.value
    if payload.admin_message is not None:
        complaint.admin_message = payload.admin_message
    if new_status == ComplaintStatus.RESOLVED and complaint.resolved_at is None:
        complaint.resolved_at = now
    session.add(complaint)
    session.add(
        StatusHistory(
            complaint_id=complaint.id,
            old_status=old_status.value,
            new_status=new_status.value,
            changed_by=identity.email,
            notes=payload.admin_message,
            changed_at=now,
        )
    )
    await session.commit()
    await session.refresh(complaint)

    logger.info(
        "Complaint status updated",
        extra={"complaint_id": complaint.id, "old_status": old_status.value, "new_status": new_status.value},
    )
    if new_status == ComplaintStatus.RESOLVED:
        notifier.notify_resolution(complaint)
    return complaint_payload(complaint)


@router.get("/{complaint_id}/status-history")
async def status_history(
    complaint_id: int,
    access: AccessContext = Depends(auth.require_owner_or_elevated()),
    session=Depends(get_session),
):
    complaint = await _get_complaint_or_404(session, complaint_id)
    access.assert_owns(complaint.email)
    stmt = (
        select(StatusHistory)
        .where(StatusHistory.complaint_id == complaint_id)
        .order_by(StatusHistory.changed_at.asc(), StatusHistory.id.asc())
    )
    result = await session.exec(stmt)
    return list(result.all())


@router.patch("/{complaint_id}/assign")
async def assign_complaint(
    complaint_id: int,
    payload: AssignmentUpdate,
    identity: Identity = Depends(auth.require_admin),
    session=Depends(get_session),
):
    complaint = await _get_complaint_or_404(session, complaint_id)
    if complaint.status == ComplaintStatus.RESOLVED.value:
        raise HTTPException(status_code=400, detail="Resolved complaints cannot be reassigned")

    assignee = await session.get(User, payload.assigned_to)
    if not assignee or assignee.status != AccountStatus.ACTIVE.value:
        raise HTTPException(status_code=400, detail="Assignee not found or inactive")
    if not (Role.parse(assignee.role) or Role.USER).is_elevated:
        raise HTTPException(status_code=400, detail="Complaints can only be assigned to admins")

    complaint.assigned_to = assignee.id
    complaint.assigned_at = utcnow()
    session.add(complaint)
    await session.commit()
    await session.refresh(complaint)
    logger.info(
        "Complaint assigned",
        extra={"complaint_id": complaint.id, "assigned_to": assignee.id, "assigned_by": identity.id},
    )
    return complaint_payload(complaint)
