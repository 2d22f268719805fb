"""
SLA policy: time limits (in hours) for complaint resolution by priority.

Everything here is a pure function of its inputs. Escalation history is never
consulted; deciding whether a breach has already been acted on is the
escalation engine's job.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging

from .models import Priority
from .time_utils import as_utc, utcnow

logger = logging.getLogger("app.sla")

SLA_LIMITS = {
    Priority.HIGH: 24,
    Priority.MEDIUM: 48,
    Priority.LOW: 72,
}
DEFAULT_PRIORITY = Priority.LOW

_MS_PER_HOUR = 60 * 60 * 1000


@dataclass(frozen=True)
class SlaCheck:
    breached: bool
    hours_elapsed: int
    sla_limit: int
    hours_overdue: int


def get_sla_hours(priority: Optional[str]) -> int:
    """Hours allowed before a complaint of `priority` breaches its SLA.

    Unknown priorities fall back to the `low` limit.
    """
    try:
        return SLA_LIMITS[Priority(priority)]
    except ValueError:
        logger.debug("Unknown priority %r, using %s SLA", priority, DEFAULT_PRIORITY.value)
        return SLA_LIMITS[DEFAULT_PRIORITY]


def hours_between(start: datetime, end: datetime) -> int:
    """Whole hours from `start` to `end` (floor of elapsed milliseconds)."""
    elapsed = as_utc(end) - as_utc(start)
    elapsed_ms = elapsed // timedelta(milliseconds=1)
    return elapsed_ms // _MS_PER_HOUR


def check_sla_breach(created_at: datetime, priority: Optional[str], now: Optional[datetime] = None) -> SlaCheck:
    hours_elapsed = hours_between(created_at, now or utcnow())
    sla_limit = get_sla_hours(priority)
    return SlaCheck(
        breached=hours_elapsed > sla_limit,
        hours_elapsed=hours_elapsed,
        sla_limit=sla_limit,
        hours_overdue=max(0, hours_elapsed - sla_limit),
    )


def sla_deadline(created_at: datetime, priority: Optional[str]) -> datetime:
    return as_utc(created_at) + timedelta(hours=get_sla_hours(priority))
