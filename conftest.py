import os
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlmodel import SQLModel

REPO_ROOT = Path(__file__).parent

# Set environment variables BEFORE importing app modules to bypass strict checks
os.environ["JWT_SECRET"] = "test-secret-key-for-pytest-only-12345"
# Use aiosqlite for async SQLite testing
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_portal.db"
os.environ.setdefault("APP_ENV", "test")

db_url = os.environ["DATABASE_URL"]
if db_url.startswith("sqlite+aiosqlite:///"):
    raw_path = db_url.split("sqlite+aiosqlite:///", 1)[1]
    abs_path = (REPO_ROOT / raw_path).resolve()
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{abs_path}"

# Add the backend directory to sys.path so imports work
BACKEND_PATH = REPO_ROOT / "fastapi-backend"
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))

import complaint_portal.database as database  # noqa: E402
from complaint_portal import auth  # noqa: E402
from complaint_portal.escalation import EscalationEngine  # noqa: E402
from complaint_portal.models import AccountStatus, Role, User  # noqa: E402
from complaint_portal.scheduler import EscalationScheduler  # noqa: E402
from complaint_portal.store import SqlComplaintStore  # noqa: E402
from complaint_portal.tokens import get_token_service  # noqa: E402


class RecordingNotifier:
    """Notifier double that remembers every call instead of sending mail."""

    def __init__(self):
        self.submissions = []
        self.escalations = []
        self.resolutions = []
        self.verifications = []
        self.password_resets = []

    def notify_submission(self, complaint):
        self.submissions.append(complaint)

    def notify_escalation(self, complaint, hours_overdue):
        self.escalations.append((complaint, hours_overdue))

    def notify_resolution(self, complaint):
        self.resolutions.append(complaint)

    def notify_verification(self, email, token):
        self.verifications.append((email, token))

    def notify_password_reset(self, email, name, token):
        self.password_resets.append((email, name, token))


@pytest.fixture(scope="session", autouse=True)
def _clean_database_file():
    db_path = Path(os.environ["DATABASE_URL"].split("sqlite+aiosqlite:///", 1)[1])
    db_path.unlink(missing_ok=True)
    yield
    db_path.unlink(missing_ok=True)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh schema for every test on the app's own async engine."""
    async with database.engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    return database.engine


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store(db_engine) -> SqlComplaintStore:
    return SqlComplaintStore(database.async_session_factory)


@pytest.fixture
def escalation_engine(store, notifier) -> EscalationEngine:
    return EscalationEngine(store, notifier=notifier)


@pytest.fixture
def scheduler(escalation_engine) -> EscalationScheduler:
    return EscalationScheduler(escalation_engine, run_on_start=False)


@pytest_asyncio.fixture(scope="function")
async def make_user(db_engine) -> Callable[..., Awaitable[Tuple[User, str]]]:
    """Return a factory that creates a user directly in the DB and returns (user, access_token)."""

    async def _create(
        email: str,
        role: Role = Role.USER,
        password: str = "testpass123",
        status: AccountStatus = AccountStatus.ACTIVE,
        name: Optional[str] = None,
    ):
        async with database.async_session_factory() as session:
            user = await auth.create_user(
                session,
                email=email,
                password=password,
                name=name or email.split("@")[0],
                role=role,
                email_verified=True,
            )
            if status != AccountStatus.ACTIVE:
                user.status = status.value
                session.add(user)
                await session.commit()
                await session.refresh(user)
        return user, get_token_service().issue_access(user)

    return _create


@pytest_asyncio.fixture(scope="function")
async def admin_token(make_user) -> str:
    _, token = await make_user("admin-in-tests@example.com", role=Role.ADMIN)
    return token


@pytest_asyncio.fixture(scope="function")
async def superadmin_token(make_user) -> str:
    _, token = await make_user("root-in-tests@example.com", role=Role.SUPERADMIN)
    return token


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, notifier, escalation_engine, scheduler):
    """In-process client; startup hooks don't run, so services are installed here."""
    from complaint_portal.main import app

    app.state.notifier = notifier
    app.state.escalation_engine = escalation_engine
    app.state.scheduler = scheduler
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    for attr in ("notifier", "escalation_engine", "scheduler"):
        if hasattr(app.state, attr):
            delattr(app.state, attr)
