from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
import logging

from .config import get_settings
from .database import async_session_factory, init_db
from .escalation import EscalationEngine
from .notifier import EmailNotifier
from .observability import (
    setup_logging,
    setup_metrics_middleware,
    get_health_check,
    metrics_endpoint,
)
from .routes import admin as admin_routes
from .routes import auth as auth_routes
from .routes import complaints as complaint_routes
from .scheduler import EscalationScheduler
from .store import SqlComplaintStore

# Setup observability
setup_logging()

# Application logger
logger = logging.getLogger("app")

settings = get_settings()

app = FastAPI(title="Complaint Portal API")

# Setup metrics middleware
setup_metrics_middleware(app)

# Setup CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_routes.router)
app.include_router(complaint_routes.router)
app.include_router(admin_routes.router)


@app.on_event("startup")
async def on_startup():
    await init_db()

    notifier = EmailNotifier(settings)
    await notifier.start()

    engine = EscalationEngine(SqlComplaintStore(async_session_factory), notifier=notifier)
    scheduler = EscalationScheduler(
        engine,
        interval_seconds=settings.escalation_interval_seconds,
        run_on_start=settings.escalation_run_on_start,
        initial_delay_seconds=settings.escalation_initial_delay_seconds,
    )
    await scheduler.start()

    app.state.notifier = notifier
    app.state.escalation_engine = engine
    app.state.scheduler = scheduler
    logger.info("Complaint portal started", extra={"environment": settings.environment})


@app.on_event("shutdown")
async def on_shutdown():
    # Stop the timer first so no new sweep starts while mail is draining.
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()
    notifier = getattr(app.state, "notifier", None)
    if notifier is not None:
        await notifier.close()
    logger.info("Complaint portal stopped")


@app.get("/health")
def health(request: Request):
    """Health check endpoint."""
    return get_health_check(getattr(request.app.state, "scheduler", None))


@app.get("/metrics")
def metrics(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return metrics_endpoint(request)
