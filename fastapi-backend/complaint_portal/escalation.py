"""
Escalation engine.

Re-evaluates every unresolved complaint against its SLA and advances the
complaint's escalation level when the breach has grown past the level already
recorded on the complaint. The stored level is the only idempotency key: an
immediate re-run finds `target <= current` and does nothing. The escalation
history table is an audit trail and is never read to make that decision.

The scheduled tick and the administrator's manual trigger both call
`EscalationEngine.run_sweep`, so there is exactly one decision path.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .errors import PersistenceFailure
from .metrics import (
    COMPLAINTS_ESCALATED,
    ESCALATION_ROW_FAILURES,
    ESCALATION_SWEEPS,
    NOTIFICATION_FAILURES,
)
from .models import Complaint, ComplaintStatus, EscalationHistory, Priority
from .sla import SlaCheck, check_sla_breach
from .store import ComplaintStore
from .time_utils import as_utc, utcnow

logger = logging.getLogger("app.escalation")

# Each further full SLA period of overdue time adds one escalation level.
ESCALATION_STEP_PERIODS = 1
CRITICAL_ESCALATION_LEVEL = 3


def target_escalation_level(check: SlaCheck) -> int:
    """Escalation level implied by an SLA check.

    0 while within SLA, 1 on first breach, plus one for every full additional
    `ESCALATION_STEP_PERIODS` SLA periods overdue. Monotone in elapsed time.
    """
    if not check.breached:
        return 0
    return 1 + check.hours_overdue // (check.sla_limit * ESCALATION_STEP_PERIODS)


@dataclass(frozen=True)
class EscalationDecision:
    complaint_id: int
    priority: str
    from_level: int
    to_level: int
    sla: SlaCheck

    @property
    def levels(self) -> range:
        return range(self.from_level + 1, self.to_level + 1)

    def reason(self) -> str:
        return (
            f"SLA breach: {self.sla.hours_overdue} hours overdue "
            f"({self.priority} priority, {self.sla.sla_limit}h limit)"
        )

    def history_records(self, now: datetime) -> List[EscalationHistory]:
        # One audit row per level crossed, so a two-level jump leaves two rows.
        return [
            EscalationHistory(
                complaint_id=self.complaint_id,
                escalation_level=level,
                reason=self.reason(),
                created_at=now,
            )
            for level in self.levels
        ]


def decide(complaint: Complaint, now: datetime) -> Optional[EscalationDecision]:
    """Return the escalation this complaint needs at `now`, or None."""
    if complaint.status == ComplaintStatus.RESOLVED.value:
        return None
    check = check_sla_breach(complaint.created_at, complaint.priority, now)
    if not check.breached:
        return None
    current = complaint.escalation_level or 0
    target = target_escalation_level(check)
    if target <= current:
        return None
    return EscalationDecision(
        complaint_id=complaint.id,
        priority=complaint.priority,
        from_level=current,
        to_level=target,
        sla=check,
    )


@dataclass
class SweepResult:
    processed: int = 0
    escalated: int = 0
    failed: int = 0
    trigger: str = "manual"
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    escalated_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "escalated": self.escalated,
            "failed": self.failed,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class EscalationEngine:
    def __init__(
        self,
        store: ComplaintStore,
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._notifier = notifier
        self._clock = clock

    async def run_sweep(self, now: Optional[datetime] = None, trigger: str = "manual") -> SweepResult:
        """Evaluate every unresolved complaint once.

        A failure on one complaint is logged and counted; the sweep moves on to
        the next. Only a failure to load the unresolved set aborts the sweep.
        """
        now = now or self._clock()
        result = SweepResult(trigger=trigger, started_at=now)
        ESCALATION_SWEEPS.labels(trigger=trigger).inc()
        logger.info("Starting escalation check (%s)", trigger)

        complaints = await self._store.list_unresolved()
        logger.info("Found %d unresolved complaints", len(complaints))

        for complaint in complaints:
            result.processed += 1
            try:
                escalated = await self._process(complaint, now)
            except PersistenceFailure as exc:
                result.failed += 1
                ESCALATION_ROW_FAILURES.inc()
                logger.error("Escalation failed for complaint %s: %s", complaint.id, exc)
                continue
            except Exception:
                result.failed += 1
                ESCALATION_ROW_FAILURES.inc()
                logger.exception("Unexpected error escalating complaint %s", complaint.id)
                continue
            if escalated:
                result.escalated += 1
                result.escalated_ids.append(complaint.id)

        result.finished_at = self._clock()
        logger.info(
            "Escalation check complete: processed=%d escalated=%d failed=%d",
            result.processed,
            result.escalated,
            result.failed,
        )
        return result

    async def _process(self, complaint: Complaint, now: datetime) -> bool:
        decision = decide(complaint, now)
        if decision is None:
            return False

        logger.info(
            "Escalating complaint #%s: priority=%s limit=%sh elapsed=%sh overdue=%sh level %d -> %d",
            complaint.id,
            complaint.priority,
            decision.sla.sla_limit,
            decision.sla.hours_elapsed,
            decision.sla.hours_overdue,
            decision.from_level,
            decision.to_level,
        )
        # A row that has started committing finishes even if the sweep is cancelled,
        # and the cancellation only propagates to the caller once the write settled.
        write = asyncio.ensure_future(
            self._store.apply_escalation(
                complaint.id,
                decision.to_level,
                now,
                decision.history_records(now),
            )
        )
        try:
            updated = await asyncio.shield(write)
        except asyncio.CancelledError:
            await asyncio.wait({write})
            if not write.cancelled() and write.exception() is not None:
                logger.error(
                    "Escalation write for complaint %s failed during cancellation: %s",
                    complaint.id,
                    write.exception(),
                )
            raise
        if updated is None:
            logger.info("Complaint #%s changed before escalation was applied; skipped", complaint.id)
            return False

        COMPLAINTS_ESCALATED.inc()
        if self._notifier is not None:
            try:
                self._notifier.notify_escalation(updated, decision.sla.hours_overdue)
            except Exception:
                NOTIFICATION_FAILURES.labels(kind="escalation").inc()
                logger.exception("Escalation notification for complaint %s failed", complaint.id)
        return True

    async def escalated_complaints(self) -> List[Complaint]:
        complaints = [c for c in await self._store.list_unresolved() if (c.escalation_level or 0) > 0]
        complaints.sort(key=lambda c: (-(c.escalation_level or 0), as_utc(c.created_at)))
        return complaints

    async def history_for(self, complaint_id: int) -> List[EscalationHistory]:
        return await self._store.history_for(complaint_id)

    async def escalation_stats(self) -> Dict[str, Any]:
        complaints = await self._store.list_unresolved()
        levels = [c.escalation_level or 0 for c in complaints]
        by_priority = []
        for priority in sorted(Priority, key=lambda p: p.rank, reverse=True):
            group = [c for c in complaints if c.priority == priority.value]
            if not group:
                continue
            by_priority.append(
                {
                    "priority": priority.value,
                    "count": len(group),
                    "escalated": sum(1 for c in group if (c.escalation_level or 0) > 0),
                }
            )
        return {
            "summary": {
                "total_unresolved": len(complaints),
                "total_escalated": sum(1 for level in levels if level > 0),
                "critical_escalations": sum(1 for level in levels if level >= CRITICAL_ESCALATION_LEVEL),
                "avg_escalation_level": round(sum(levels) / len(levels), 2) if levels else 0,
            },
            "by_priority": by_priority,
        }


__all__ = [
    "CRITICAL_ESCALATION_LEVEL",
    "EscalationDecision",
    "EscalationEngine",
    "SweepResult",
    "decide",
    "target_escalation_level",
]
