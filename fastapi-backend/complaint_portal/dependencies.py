"""Common FastAPI dependencies.

Long-lived services are constructed once at startup (see `main.on_startup`)
and stored on `app.state`; routes reach them through these helpers so tests
can install fakes on the same attributes.
"""

from fastapi import HTTPException, Request

from .escalation import EscalationEngine
from .notifier import Notifier, NullNotifier
from .scheduler import EscalationScheduler


def get_notifier(request: Request) -> Notifier:
    notifier = getattr(request.app.state, "notifier", None)
    return notifier if notifier is not None else NullNotifier()


def get_escalation_engine(request: Request) -> EscalationEngine:
    engine = getattr(request.app.state, "escalation_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Escalation engine not initialized")
    return engine


def get_scheduler(request: Request) -> EscalationScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Escalation scheduler not initialized")
    return scheduler


__all__ = ["get_escalation_engine", "get_notifier", "get_scheduler"]
