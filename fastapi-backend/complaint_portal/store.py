"""Complaint store adapter used by the escalation engine.

The engine only needs four operations: read every unresolved complaint, read
one, atomically advance a complaint's escalation fields together with its
audit rows, and append to the escalation history. Each write runs in its own
transaction; nothing spans complaints.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence
import logging

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .errors import PersistenceFailure
from .models import Complaint, ComplaintStatus, EscalationHistory

logger = logging.getLogger("app.store")


class ComplaintStore(Protocol):
    async def list_unresolved(self) -> List[Complaint]: ...

    async def get(self, complaint_id: int) -> Optional[Complaint]: ...

    async def apply_escalation(
        self,
        complaint_id: int,
        new_level: int,
        escalated_at: datetime,
        records: Sequence[EscalationHistory],
    ) -> Optional[Complaint]: ...

    async def append_history(self, record: EscalationHistory) -> EscalationHistory: ...

    async def history_for(self, complaint_id: int) -> List[EscalationHistory]: ...


class SqlComplaintStore:
    """ComplaintStore backed by the SQLModel async engine."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def list_unresolved(self) -> List[Complaint]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(Complaint)
                    .where(Complaint.status != ComplaintStatus.RESOLVED.value)
                    .order_by(Complaint.created_at.asc())
                )
                result = await session.exec(stmt)
                return list(result.all())
        except SQLAlchemyError as exc:
            raise PersistenceFailure(None, f"failed to load unresolved complaints: {exc}") from exc

    async def get(self, complaint_id: int) -> Optional[Complaint]:
        try:
            async with self._session_factory() as session:
                return await session.get(Complaint, complaint_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(complaint_id, f"read failed: {exc}") from exc

    async def apply_escalation(
        self,
        complaint_id: int,
        new_level: int,
        escalated_at: datetime,
        records: Sequence[EscalationHistory],
    ) -> Optional[Complaint]:
        """Raise the complaint to `new_level` and insert its audit rows in one transaction.

        The level is compare-and-set in the UPDATE itself, so a concurrent
        writer that got there first leaves this call with nothing to do.
        Returns None (and writes nothing) if the stored level already reached
        `new_level` or the complaint was resolved in the meantime.
        """
        try:
            async with self._session_factory() as session:
                stmt = (
                    update(Complaint)
                    .where(
                        Complaint.id == complaint_id,
                        Complaint.escalation_level < new_level,
                        Complaint.status != ComplaintStatus.RESOLVED.value,
                    )
                    .values(escalation_level=new_level, escalated_at=escalated_at)
                )
                result = await session.exec(stmt)
                if result.rowcount == 0:
                    await session.rollback()
                    if await session.get(Complaint, complaint_id) is None:
                        raise PersistenceFailure(complaint_id, "complaint no longer exists")
                    return None
                for record in records:
                    session.add(record)
                await session.commit()
                return await session.get(Complaint, complaint_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(complaint_id, f"escalation write failed: {exc}") from exc

    async def append_history(self, record: EscalationHistory) -> EscalationHistory:
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
                await session.refresh(record)
                return record
        except SQLAlchemyError as exc:
            raise PersistenceFailure(record.complaint_id, f"history insert failed: {exc}") from exc

    async def history_for(self, complaint_id: int) -> List[EscalationHistory]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(EscalationHistory)
                    .where(EscalationHistory.complaint_id == complaint_id)
                    .order_by(EscalationHistory.created_at.desc(), EscalationHistory.id.desc())
                )
                result = await session.exec(stmt)
                return list(result.all())
        except SQLAlchemyError as exc:
            raise PersistenceFailure(complaint_id, f"history read failed: {exc}") from exc


__all__ = ["ComplaintStore", "SqlComplaintStore"]
