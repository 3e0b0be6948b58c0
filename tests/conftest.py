"""Pytest fixtures and factories.

Important: SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise relationship targets might not exist yet.
"""
import os
import secrets
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'traffic_exchange' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from traffic_exchange.main import app  # type: ignore
from traffic_exchange.database import Base  # type: ignore
from traffic_exchange.api import deps  # type: ignore
from traffic_exchange.models.db import User, Site, UserRole  # noqa: E402
from traffic_exchange.services.directory import generate_referral_code  # noqa: E402

# File-based SQLite so concurrent completions in worker threads each get their own
# connection; in-memory StaticPool would share one connection across threads.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_traffic_exchange.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# The scheduler module imported SessionLocal at import time; rebind it (and the
# database module attribute) so sweeps see the test database.
import traffic_exchange.database as _database  # noqa: E402
_database.SessionLocal = TestingSessionLocal  # type: ignore
import traffic_exchange.jobs.unlock_scheduler as _scheduler_mod  # noqa: E402
_scheduler_mod.SessionLocal = TestingSessionLocal  # type: ignore

# Fixed instant well inside a UTC day, used as "now" by service-level tests.
T0 = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)

@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_traffic_exchange.db")
    except OSError:
        pass

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture()
def session_factory():
    """For tests that need one session per thread."""
    return TestingSessionLocal

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

@pytest.fixture()
def client():
    return TestClient(app)

@pytest.fixture()
def now():
    return T0

@pytest.fixture()
def unique_ip():
    """A fresh IP per call; IP cooldown slots are global across the test DB."""
    def _make() -> str:
        raw = secrets.token_bytes(3)
        return f"10.{raw[0]}.{raw[1]}.{raw[2]}"
    return _make

# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(
        *,
        role: UserRole = UserRole.MEMBER,
        referred_by_id: int | None = None,
    ) -> User:
        suffix = secrets.token_hex(4)
        user = User(
            username=f"user_{suffix}",
            email=f"{suffix}@example.com",
            api_key=f"tx_{secrets.token_hex(12)}",
            role=role,
            referral_code=generate_referral_code(8),
            referred_by_id=referred_by_id,
            points_balance=Decimal("0"),
            earnings_available=Decimal("0"),
            earnings_locked=Decimal("0"),
            fraud_flag_count=0,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _create

@pytest.fixture()
def site_factory(db_session, user_factory):
    def _create(*, owner: User | None = None, points_per_view: Decimal = Decimal("1"), is_active: bool = True) -> Site:
        owner = owner or user_factory()
        site = Site(
            owner_id=owner.id,
            url=f"https://{secrets.token_hex(4)}.example.com",
            points_per_view=points_per_view,
            is_active=is_active,
        )
        db_session.add(site)
        db_session.commit()
        db_session.refresh(site)
        return site
    return _create

@pytest.fixture()
def auth_header(user_factory):
    user = user_factory()
    return {"Authorization": f"Bearer {user.api_key}"}, user

@pytest.fixture()
def admin_header(user_factory):
    admin = user_factory(role=UserRole.ADMIN)
    return {"Authorization": f"Bearer {admin.api_key}"}, admin
