import os
import tempfile

# Settings are read at import time, so the test database must be chosen first
_DB_DIR = tempfile.mkdtemp(prefix="medislot-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/medislot.db"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"

from datetime import time
from types import SimpleNamespace

import pytest
from httpx import AsyncClient, ASGITransport
from sqlmodel import SQLModel

from medislot.core.security import create_actor_token
from medislot.core.tenancy import Actor
from medislot.db.models import (
    AvailabilityTemplate,
    Doctor,
    Patient,
    Recurring,
    Tenant,
    User,
    UserRole,
    Weekday,
)
from medislot.db.session import async_session, engine
from medislot.main import app
from medislot.services.events import get_event_publisher


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish(self, event, appointment, actor_id=None):
        self.events.append((event, appointment.id))

    @property
    def names(self):
        return [name for name, _ in self.events]


async def create_clinic(session, slug: str) -> SimpleNamespace:
    tenant = Tenant(name=f"{slug.title()} Clinic", slug=slug)
    session.add(tenant)

    admin = User(tenant_id=tenant.id, role=UserRole.ADMIN, name="Front Desk")
    doctor_user = User(tenant_id=tenant.id, role=UserRole.DOCTOR, name="Dr. Meera Rao")
    patient_user = User(tenant_id=tenant.id, role=UserRole.PATIENT, name="Arjun Nair")
    session.add_all([admin, doctor_user, patient_user])

    doctor = Doctor(tenant_id=tenant.id, user_id=doctor_user.id, name="Dr. Meera Rao", specialization="General Medicine")
    other_doctor = Doctor(tenant_id=tenant.id, name="Dr. Kabir Shah", specialization="Dermatology")
    patient = Patient(tenant_id=tenant.id, user_id=patient_user.id, name="Arjun Nair", patient_code="P-0001")
    other_patient = Patient(tenant_id=tenant.id, name="Lina Das", patient_code="P-0002")
    session.add_all([doctor, other_doctor, patient, other_patient])
    await session.commit()

    return SimpleNamespace(
        tenant=tenant,
        doctor=doctor,
        other_doctor=other_doctor,
        patient=patient,
        other_patient=other_patient,
        admin=Actor(user_id=admin.id, tenant_id=tenant.id, role=UserRole.ADMIN),
        doctor_actor=Actor(user_id=doctor_user.id, tenant_id=tenant.id, role=UserRole.DOCTOR, doctor_id=doctor.id),
        patient_actor=Actor(user_id=patient_user.id, tenant_id=tenant.id, role=UserRole.PATIENT, patient_id=patient.id),
    )


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(db):
    async with async_session() as session:
        yield session


# Seeded in their own session so test sessions never expire them on rollback
@pytest.fixture
async def clinic(db):
    async with async_session() as session:
        return await create_clinic(session, "lakeside")


@pytest.fixture
async def other_clinic(db):
    async with async_session() as session:
        return await create_clinic(session, "hillview")


@pytest.fixture
def add_template(session):
    async def _add(clinic, doctor=None, rule=None, start=time(9, 0), end=time(12, 0), **kwargs):
        template = AvailabilityTemplate(
            tenant_id=clinic.tenant.id,
            doctor_id=(doctor or clinic.doctor).id,
            start_time=start,
            end_time=end,
            **kwargs,
        )
        template.apply_rule(rule or Recurring(Weekday.MONDAY))
        session.add(template)
        await session.commit()
        return template
    return _add


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
async def client(db, publisher):
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(actor: Actor) -> dict:
        token = create_actor_token(actor.user_id, actor.tenant_id, actor.role.value)
        return {"Authorization": f"Bearer {token}"}
    return _headers
