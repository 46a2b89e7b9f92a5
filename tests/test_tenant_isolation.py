from datetime import date, time

import pytest
from sqlmodel import select

from medislot.core.exceptions import NotFoundError, TenantIsolationError
from medislot.core.tenancy import TenantScope
from medislot.db.models import Appointment, Doctor, Patient, Tenant
from medislot.services.appointment_book import AppointmentFilters
from medislot.services.scheduling_service import SchedulingService

MONDAY = date(2030, 1, 7)


async def test_scope_requires_a_tenant(session):
    with pytest.raises(TenantIsolationError):
        TenantScope(session, None)


async def test_scope_refuses_models_without_a_tenant(session, clinic):
    scope = TenantScope(session, clinic.tenant.id)

    with pytest.raises(TenantIsolationError):
        scope.select(Tenant)


async def test_scoped_query_always_filters_by_tenant(session, clinic):
    statement = str(TenantScope(session, clinic.tenant.id).select(Doctor).compile())

    assert "doctors.tenant_id" in statement


async def test_rows_of_another_tenant_are_invisible(session, clinic, other_clinic):
    scope = TenantScope(session, clinic.tenant.id)

    assert await scope.get(Doctor, other_clinic.doctor.id) is None
    with pytest.raises(NotFoundError):
        await scope.get_or_404(Patient, other_clinic.patient.id, "Patient not found")

    result = await session.execute(scope.select(Doctor))
    doctors = result.scalars().all()
    await session.commit()
    assert {d.id for d in doctors} == {clinic.doctor.id, clinic.other_doctor.id}


async def test_adding_a_row_stamped_for_another_tenant_fails(session, clinic, other_clinic):
    scope = TenantScope(session, clinic.tenant.id)
    stray = Patient(tenant_id=other_clinic.tenant.id, name="Stray")

    with pytest.raises(TenantIsolationError):
        scope.add(stray)

    unstamped = Patient(name="New Patient")
    scope.add(unstamped)
    assert unstamped.tenant_id == clinic.tenant.id
    await session.rollback()


async def test_booking_with_foreign_doctor_creates_nothing(session, clinic, other_clinic):
    service = SchedulingService(session)

    with pytest.raises(NotFoundError):
        await service.create_appointment(clinic.admin, {
            "doctor_id": other_clinic.doctor.id,
            "patient_id": clinic.patient.id,
            "appointment_date": MONDAY,
            "appointment_time": time(9, 0),
            "duration_minutes": 30,
            "appointment_type": "Consultation",
        })

    rows = (await session.execute(select(Appointment))).scalars().all()
    await session.commit()
    assert rows == []


async def test_slots_of_foreign_doctor_are_not_found(session, clinic, other_clinic, add_template):
    await add_template(other_clinic)
    service = SchedulingService(session)

    with pytest.raises(NotFoundError):
        await service.get_available_slots(clinic.patient_actor, other_clinic.doctor.id, MONDAY)
    await session.rollback()

    slots = await service.get_available_slots(other_clinic.patient_actor, other_clinic.doctor.id, MONDAY)
    await session.commit()
    assert slots["count"] == 6


async def test_bookings_in_one_tenant_do_not_block_another(session, clinic, other_clinic):
    service = SchedulingService(session)
    request = {
        "appointment_date": MONDAY,
        "appointment_time": time(9, 0),
        "duration_minutes": 30,
        "appointment_type": "Consultation",
    }

    await service.create_appointment(clinic.admin, {**request, "doctor_id": clinic.doctor.id, "patient_id": clinic.patient.id})
    await service.create_appointment(
        other_clinic.admin, {**request, "doctor_id": other_clinic.doctor.id, "patient_id": other_clinic.patient.id}
    )

    listing = await service.list_appointments(clinic.admin, AppointmentFilters())
    await session.commit()
    assert listing["pagination"]["total_records"] == 1
    assert listing["appointments"][0].tenant_id == clinic.tenant.id
