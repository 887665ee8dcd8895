# backend/tests/conftest.py
"""
Pytest configuration for the TutorBook backend.

Every test gets its own in-memory SQLite database, so nothing here can touch
a real database. The payment gateway is replaced by an in-memory fake.
"""

import os
import sys

# Set testing mode BEFORE any tutorbook imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt-signing")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tutorbook.auth import create_access_token
from tutorbook.core.config import Settings
from tutorbook.core.enums import RoleName
from tutorbook.database import Base, get_db
from tutorbook.main import app
import tutorbook.models  # noqa: F401  registers tables on Base.metadata
from tutorbook.models.user import User
from tutorbook.services.booking_service import BookingService
from tutorbook.services.capture_service import CaptureService
from tutorbook.services.dependencies import (
    get_payment_gateway,
    get_session_factory,
    get_settings,
)
from tutorbook.services.notification_service import NotificationService
from tutorbook.services.webhook_reconciler import WebhookReconciler

from tests.factories.lesson_builders import create_user
from tests.factories.payment_gateway_fakes import FakePaymentGateway

# A fixed clock far enough in the future that "now" never overtakes it
FIXED_NOW = datetime(2030, 1, 7, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Opens extra sessions on the test database, for code that runs in worker threads."""
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory):
    """Create a new database session for each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        secret_key="test-secret-key-for-jwt-signing",
        database_url="sqlite://",
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret="whsec_test_dummy",
        frontend_url="http://localhost:3000",
        # One in-memory connection is shared by every session
        backfill_max_concurrency=1,
    )


@pytest.fixture
def fake_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


# ============================================================================
# Users
# ============================================================================


@pytest.fixture
def test_student(db: Session) -> User:
    return create_user(db, RoleName.STUDENT, "student")


@pytest.fixture
def test_student_2(db: Session) -> User:
    return create_user(db, RoleName.STUDENT, "otherstudent")


@pytest.fixture
def test_tutor(db: Session) -> User:
    return create_user(db, RoleName.TUTOR, "tutor")


@pytest.fixture
def test_tutor_2(db: Session) -> User:
    return create_user(db, RoleName.TUTOR, "othertutor")


@pytest.fixture
def test_admin(db: Session) -> User:
    return create_user(db, RoleName.ADMIN, "admin")


@pytest.fixture
def auth_headers_for() -> Callable[[User], Dict[str, str]]:
    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token(data={"sub": user.id}, expires_delta=timedelta(minutes=30))
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def notification_service() -> NotificationService:
    return NotificationService()


@pytest.fixture
def booking_service(db, fake_gateway, test_settings, notification_service) -> BookingService:
    return BookingService(db, fake_gateway, test_settings, notification_service)


@pytest.fixture
def capture_service(db, fake_gateway, test_settings) -> CaptureService:
    return CaptureService(db, fake_gateway, test_settings)


@pytest.fixture
def reconciler(db, fake_gateway, notification_service) -> WebhookReconciler:
    return WebhookReconciler(db, fake_gateway, notification_service)


@pytest.fixture
def client(
    db: Session, session_factory, fake_gateway: FakePaymentGateway, test_settings: Settings
):
    """Create a test client bound to the test database and the fake gateway."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    # Don't use context manager, the lifespan would create tables on the app engine
    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()
