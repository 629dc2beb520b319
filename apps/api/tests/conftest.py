"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, created and dropped per test
- Organization/contact fixtures and an appointment factory
- Recording fake notification transport
- HTTPX AsyncClient (anonymous and staff-authenticated)
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

# Must be set before the app modules read settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef-0123456789")

import anyio
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from scheduling_core.core.deps import get_db, get_transport
from scheduling_core.core.security import create_session_token
from scheduling_core.db.base import Base
from scheduling_core.db.enums import AppointmentStatus
from scheduling_core.db.models import Appointment, Contact, Organization
from scheduling_core.db.session import SessionLocal, engine
from scheduling_core.main import app
from scheduling_core.services.notification_types import SendResult


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; app code is free to commit."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization (default business hours)."""
    org = Organization(
        id=uuid.uuid4(),
        name="Test Clinic",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
        timezone="America/New_York",
        settings={},
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def test_contact(db: Session, test_org: Organization) -> Contact:
    contact = Contact(
        id=uuid.uuid4(),
        organization_id=test_org.id,
        first_name="Jane",
        last_name="Doe",
        email="Jane.Doe@Example.com",
        phone_number="+15551234567",
        notification_preference="both",
    )
    db.add(contact)
    db.commit()
    return contact


@pytest.fixture
def make_appointment(db: Session, test_org: Organization):
    """Factory that inserts an appointment directly (bypassing booking validation)."""

    def _make(
        scheduled_at: datetime | None = None,
        duration: int = 30,
        org: Organization | None = None,
        **overrides,
    ) -> Appointment:
        start = scheduled_at or datetime.now(timezone.utc) + timedelta(days=2)
        values = {
            "organization_id": (org or test_org).id,
            "title": "Consultation",
            "scheduled_at": start,
            "end_at": start + timedelta(minutes=duration),
            "duration": duration,
            "time_zone": "America/New_York",
            "attendee_name": "Jane Doe",
            "attendee_email": "jane@example.com",
            "attendee_phone": "+15551234567",
            "status": AppointmentStatus.SCHEDULED.value,
        }
        values.update(overrides)
        appointment = Appointment(**values)
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


# =============================================================================
# Fake Transport
# =============================================================================

@dataclass
class FakeTransport:
    """Records every send; per-method failures, crashes and delays are configurable."""

    calls: list[tuple[str, dict]] = field(default_factory=list)
    fail: set[str] = field(default_factory=set)
    crash: set[str] = field(default_factory=set)
    delay: dict[str, float] = field(default_factory=dict)

    async def _record(self, method: str, **kwargs) -> SendResult:
        if method in self.delay:
            await anyio.sleep(self.delay[method])
        self.calls.append((method, kwargs))
        if method in self.crash:
            raise RuntimeError(f"{method} exploded")
        if method in self.fail:
            return SendResult.failed(f"{method} rejected")
        return SendResult(success=True, external_id=f"{method}-{len(self.calls)}")

    def sent(self, method: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == method]

    async def send_confirmation(self, email, name, details, branding, action_urls=None):
        return await self._record(
            "send_confirmation", email=email, details=details, branding=branding, action_urls=action_urls
        )

    async def send_cancellation(self, email, name, details, branding):
        return await self._record("send_cancellation", email=email, details=details, branding=branding)

    async def send_rescheduled(self, email, name, details, previous_start, branding, action_urls=None):
        return await self._record(
            "send_rescheduled",
            email=email,
            details=details,
            previous_start=previous_start,
            branding=branding,
            action_urls=action_urls,
        )

    async def send_reminder(self, email, name, details, lead_hours, branding, action_urls=None):
        return await self._record(
            "send_reminder",
            email=email,
            details=details,
            lead_hours=lead_hours,
            branding=branding,
            action_urls=action_urls,
        )

    async def send_sms(self, details, sms_type):
        return await self._record("send_sms", details=details, sms_type=sms_type)

    async def initiate_reminder_call(self, details):
        return await self._record("initiate_reminder_call", details=details)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Staff authentication context."""
    org: Organization
    user_id: uuid.UUID
    token: str


@pytest.fixture(scope="function")
def test_auth(test_org: Organization) -> TestAuth:
    user_id = uuid.uuid4()
    return TestAuth(
        org=test_org,
        user_id=user_id,
        token=create_session_token(user_id=user_id, org_id=test_org.id),
    )


# =============================================================================
# Client Fixtures
# =============================================================================

def _install_overrides(db: Session, transport: FakeTransport) -> None:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transport] = lambda: transport


@pytest.fixture(scope="function")
async def client(db: Session, fake_transport: FakeTransport) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for public and internal endpoints."""
    _install_overrides(db, fake_transport)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    fake_transport: FakeTransport,
    test_auth: TestAuth,
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient carrying a staff bearer session token."""
    _install_overrides(db, fake_transport)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {test_auth.token}"},
    ) as c:
        yield c

    app.dependency_overrides.clear()
