# backend/tests/conftest.py
"""
Shared fixtures for the scheduling engine test suite.

Every test gets a fresh in-memory SQLite database and an in-memory
idempotency store, so nothing here needs Postgres or Redis.
"""

from datetime import date, timedelta
import os

# Must be set before the app (and its settings) are imported
os.environ["ENVIRONMENT"] = "test"
os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["IDEMPOTENCY_BACKEND"] = "memory"
os.environ["SCHEDULE_TIMEZONE"] = "UTC"
os.environ["SCHEDULE_LOCK_WAIT_SECONDS"] = "2"

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  (registers every table on the metadata)
from app.api.dependencies import get_db, get_guard
from app.core.enums import RoleName
from app.database import Base
from app.idempotency.guard import IdempotencyGuard
from app.idempotency.store import InMemoryIdempotencyStore
from app.main import fastapi_app
from app.principal import ActorPrincipal
from app.schemas.appointment import AppointmentCreate
from app.services.appointment_lifecycle import AppointmentLifecycleService
from app.services.availability_service import AvailabilityService
from app.services.booking_service import BookingService
from app.services.ledger_service import LedgerService
from app.services.notification_service import NotificationService

from tests._utils import (
    ADMIN_ID,
    OTHER_STUDENT_ID,
    OTHER_TUTOR_ID,
    STUDENT_ID,
    TUTOR_ID,
    actor_headers,
    at,
    next_weekday,
)

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False
)


@pytest.fixture
def db() -> Session:
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def guard(store: InMemoryIdempotencyStore) -> IdempotencyGuard:
    return IdempotencyGuard(store, namespace="test", default_ttl_s=60)


@pytest.fixture
def tutor() -> ActorPrincipal:
    return ActorPrincipal(actor_id=TUTOR_ID, role=RoleName.TUTOR)


@pytest.fixture
def other_tutor() -> ActorPrincipal:
    return ActorPrincipal(actor_id=OTHER_TUTOR_ID, role=RoleName.TUTOR)


@pytest.fixture
def student() -> ActorPrincipal:
    return ActorPrincipal(actor_id=STUDENT_ID, role=RoleName.STUDENT)


@pytest.fixture
def other_student() -> ActorPrincipal:
    return ActorPrincipal(actor_id=OTHER_STUDENT_ID, role=RoleName.STUDENT)


@pytest.fixture
def admin() -> ActorPrincipal:
    return ActorPrincipal(actor_id=ADMIN_ID, role=RoleName.ADMIN)


@pytest.fixture
def notification_service(db: Session) -> NotificationService:
    return NotificationService(db)


@pytest.fixture
def availability_service(db: Session, guard: IdempotencyGuard) -> AvailabilityService:
    return AvailabilityService(db, guard=guard)


@pytest.fixture
def booking_service(
    db: Session, guard: IdempotencyGuard, notification_service: NotificationService
) -> BookingService:
    return BookingService(db, guard, notification_service=notification_service)


@pytest.fixture
def ledger_service(db: Session, notification_service: NotificationService) -> LedgerService:
    return LedgerService(db, notification_service=notification_service)


@pytest.fixture
def lifecycle_service(
    db: Session,
    guard: IdempotencyGuard,
    ledger_service: LedgerService,
    notification_service: NotificationService,
) -> AppointmentLifecycleService:
    return AppointmentLifecycleService(
        db,
        guard=guard,
        ledger_service=ledger_service,
        notification_service=notification_service,
    )


@pytest.fixture
def lesson_day() -> date:
    """A Monday at least a week out."""
    return next_weekday(0)


@pytest.fixture
def book(booking_service: BookingService, student: ActorPrincipal, lesson_day: date):
    """Book a one-hour (by default) appointment with the default tutor."""

    def _book(
        start_hour: int = 10,
        hours: int = 1,
        day: date = None,
        actor: ActorPrincipal = None,
        subject: str = "Math",
        idempotency_key: str = None,
    ):
        day = day or lesson_day
        actor = actor or student
        start = at(day, start_hour)
        booking = AppointmentCreate(
            tutor_id=TUTOR_ID,
            subject=subject,
            start_time=start,
            end_time=start + timedelta(hours=hours),
        )
        return booking_service.create_appointment(actor, booking, idempotency_key=idempotency_key)

    return _book


@pytest.fixture
def client(db: Session, guard: IdempotencyGuard) -> TestClient:
    """Create test client with the test database and in-memory guard."""

    def override_get_db():
        yield db

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_guard] = lambda: guard
    test_client = TestClient(fastapi_app)
    yield test_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def tutor_headers() -> dict:
    return actor_headers(TUTOR_ID, "tutor")


@pytest.fixture
def student_headers() -> dict:
    return actor_headers(STUDENT_ID, "student")


@pytest.fixture
def other_student_headers() -> dict:
    return actor_headers(OTHER_STUDENT_ID, "student")


@pytest.fixture
def admin_headers() -> dict:
    return actor_headers(ADMIN_ID, "admin")
