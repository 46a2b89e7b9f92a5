import asyncio
import re
from datetime import date, time, timedelta, timezone

import pytest
from sqlmodel import select

from medislot.core.config import settings
from medislot.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from medislot.core.tenancy import TenantScope
from medislot.db.models import Appointment, AppointmentStatus, AuditLog, Tenant
from medislot.db.session import async_session
from medislot.services import appointment_book
from medislot.services.appointment_book import (
    AppointmentBook,
    AppointmentFilters,
    booking_lock_key,
    check_transition,
)

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)


@pytest.fixture
def book(session, clinic, publisher):
    return AppointmentBook(TenantScope(session, clinic.tenant.id), publisher)


async def book_at(book, clinic, at, duration=30, patient=None, day=MONDAY):
    return await book.book_appointment(
        clinic.doctor.id,
        (patient or clinic.patient).id,
        day,
        at,
        duration,
        appointment_type="Consultation",
        created_by=clinic.admin.user_id,
    )


async def test_booking_creates_scheduled_appointment(book, clinic, session, publisher):
    appointment = await book_at(book, clinic, time(9, 0))

    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.tenant_id == clinic.tenant.id
    assert re.fullmatch(r"APT-20300107-[A-Z0-9]{8}", appointment.appointment_number)
    assert publisher.names == ["appointment.created"]

    result = await session.execute(select(AuditLog).where(AuditLog.entity_id == appointment.id))
    audit = result.scalars().one()
    assert audit.action == "appointment.created"
    assert audit.payload["appointment_time"] == "09:00"


async def test_overlapping_booking_is_rejected(book, clinic, publisher):
    await book_at(book, clinic, time(9, 0))

    with pytest.raises(ConflictError) as exc:
        await book_at(book, clinic, time(9, 15), patient=clinic.other_patient)

    assert exc.value.status_code == 400
    assert exc.value.detail == "Doctor is not available at the selected time"
    assert publisher.names == ["appointment.created"]


async def test_longer_booking_enclosing_an_existing_one_is_rejected(book, clinic):
    await book_at(book, clinic, time(9, 30))

    with pytest.raises(ConflictError):
        await book_at(book, clinic, time(9, 0), duration=90, patient=clinic.other_patient)


async def test_adjacent_bookings_do_not_conflict(book, clinic):
    await book_at(book, clinic, time(9, 0))
    second = await book_at(book, clinic, time(9, 30), patient=clinic.other_patient)
    earlier = await book_at(book, clinic, time(8, 30), patient=clinic.other_patient)

    assert second.status == earlier.status == AppointmentStatus.SCHEDULED


async def test_other_doctor_is_not_blocked(book, clinic):
    await book_at(book, clinic, time(9, 0))

    other = await book.book_appointment(
        clinic.other_doctor.id, clinic.other_patient.id, MONDAY, time(9, 0), 30,
        appointment_type="Consultation",
    )
    assert other.doctor_id == clinic.other_doctor.id


async def test_cancelled_appointment_frees_the_interval(book, clinic):
    first = await book_at(book, clinic, time(9, 0))
    await book.cancel_appointment(first, clinic.admin.user_id, "Patient travelling")

    again = await book_at(book, clinic, time(9, 0), patient=clinic.other_patient)
    assert again.status == AppointmentStatus.SCHEDULED


async def test_capacity_from_template_allows_parallel_bookings(book, clinic, add_template):
    await add_template(clinic, max_concurrent=2)

    await book_at(book, clinic, time(9, 0))
    await book_at(book, clinic, time(9, 0), patient=clinic.other_patient)
    with pytest.raises(ConflictError):
        await book_at(book, clinic, time(9, 15))


async def test_unknown_patient_or_doctor_is_not_found(book, clinic, other_clinic, session):
    with pytest.raises(NotFoundError) as exc:
        await book_at(book, clinic, time(9, 0), patient=other_clinic.patient)
    assert exc.value.detail == "Patient not found"

    with pytest.raises(NotFoundError) as exc:
        await book.book_appointment(
            other_clinic.doctor.id, clinic.patient.id, MONDAY, time(9, 0), 30,
            appointment_type="Consultation",
        )
    assert exc.value.detail == "Doctor not found"

    count = (await session.execute(select(Appointment))).scalars().all()
    await session.commit()
    assert count == []


async def test_booking_across_midnight_is_rejected(book, clinic):
    with pytest.raises(ValidationError):
        await book_at(book, clinic, time(23, 45), duration=30)


async def test_concurrent_overlapping_bookings_admit_exactly_one(clinic):
    async def attempt(minute):
        async with async_session() as session:
            book = AppointmentBook(TenantScope(session, clinic.tenant.id))
            return await book.book_appointment(
                clinic.doctor.id, clinic.patient.id, MONDAY, time(10, minute), 30,
                appointment_type="Consultation",
            )

    results = await asyncio.gather(*(attempt(m) for m in (0, 5, 10, 15, 20, 25)), return_exceptions=True)

    booked = [r for r in results if isinstance(r, Appointment)]
    rejected = [r for r in results if isinstance(r, ConflictError)]
    assert len(booked) == 1
    assert len(rejected) == len(results) - 1

    async with async_session() as session:
        rows = (await session.execute(select(Appointment))).scalars().all()
    assert len(rows) == 1


async def test_status_walk_to_completion(book, clinic, publisher):
    appointment = await book_at(book, clinic, time(9, 0))

    await book.confirm_appointment(appointment, clinic.admin.user_id)
    await book.start_appointment(appointment, clinic.doctor_actor.user_id)
    assert appointment.checked_in_at is not None
    await book.complete_appointment(appointment, clinic.doctor_actor.user_id)

    assert appointment.status == AppointmentStatus.COMPLETED
    assert appointment.completed_at is not None
    assert publisher.names == [
        "appointment.created",
        "appointment.confirmed",
        "appointment.in_progress",
        "appointment.completed",
    ]


async def test_cancel_twice_is_an_error(book, clinic):
    appointment = await book_at(book, clinic, time(9, 0))

    await book.cancel_appointment(appointment, clinic.patient_actor.user_id, "Feeling better")
    assert appointment.status == AppointmentStatus.CANCELLED
    assert appointment.cancelled_by == clinic.patient_actor.user_id
    assert appointment.cancellation_reason == "Feeling better"
    assert appointment.cancelled_at is not None

    with pytest.raises(InvalidStateError) as exc:
        await book.cancel_appointment(appointment, clinic.patient_actor.user_id)
    assert exc.value.detail == "Appointment is already cancelled"
    assert exc.value.status_code == 400


async def test_terminal_appointments_reject_transitions(book, clinic, session):
    appointment = await book_at(book, clinic, time(9, 0))
    await book.mark_no_show(appointment, clinic.admin.user_id)

    with pytest.raises(InvalidStateError):
        await book.confirm_appointment(appointment)
    with pytest.raises(InvalidStateError):
        await book.cancel_appointment(appointment)
    with pytest.raises(InvalidStateError):
        await book.update_appointment(appointment, {"notes": "late"})

    await session.refresh(appointment)
    assert appointment.status == AppointmentStatus.NO_SHOW


async def test_in_progress_can_only_complete(book, clinic):
    appointment = await book_at(book, clinic, time(9, 0))
    await book.start_appointment(appointment)

    with pytest.raises(InvalidStateError):
        await book.cancel_appointment(appointment)
    with pytest.raises(InvalidStateError):
        await book.update_appointment(appointment, {"appointment_time": time(11, 0)})


async def test_reschedule_checks_the_new_interval(book, clinic, publisher):
    first = await book_at(book, clinic, time(9, 0))
    second = await book_at(book, clinic, time(10, 0), patient=clinic.other_patient)

    with pytest.raises(ConflictError):
        await book.update_appointment(second, {"appointment_time": time(9, 15)})

    # Growing into its own old interval is fine
    await book.update_appointment(first, {"duration_minutes": 60})
    moved = await book.update_appointment(second, {"appointment_date": MONDAY + timedelta(days=1)})

    assert first.duration_minutes == 60
    assert moved.appointment_date == MONDAY + timedelta(days=1)
    assert publisher.names[-2:] == ["appointment.rescheduled", "appointment.rescheduled"]


async def test_detail_update_does_not_touch_timing(book, clinic, publisher):
    appointment = await book_at(book, clinic, time(9, 0))

    await book.update_appointment(appointment, {"notes": "Bring reports", "location": "Room 4"})

    assert appointment.notes == "Bring reports"
    assert appointment.appointment_time == time(9, 0)
    assert publisher.names[-1] == "appointment.updated"

    with pytest.raises(ValidationError):
        await book.update_appointment(appointment, {"status": AppointmentStatus.COMPLETED})


async def test_list_filters_and_paginates(book, clinic):
    for hour in (9, 10, 11):
        await book_at(book, clinic, time(hour, 0))
    await book.book_appointment(
        clinic.other_doctor.id, clinic.other_patient.id, MONDAY, time(9, 0), 30,
        appointment_type="Consultation",
    )

    rows, total = await book.list_appointments(AppointmentFilters(doctor_id=clinic.doctor.id), page=2, limit=2)
    assert total == 3
    assert [r.appointment_time for r in rows] == [time(11, 0)]

    rows, total = await book.list_appointments(AppointmentFilters(patient_id=clinic.other_patient.id))
    assert total == 1


def test_transition_table():
    check_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
    check_transition(AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW)
    check_transition(AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED)
    for terminal in (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW):
        for target in AppointmentStatus:
            with pytest.raises(InvalidStateError):
                check_transition(terminal, target)


async def test_lock_key_is_stable_and_signed_64_bit(clinic):
    key = booking_lock_key(clinic.tenant.id, clinic.doctor.id, MONDAY)

    assert key == booking_lock_key(clinic.tenant.id, clinic.doctor.id, MONDAY)
    assert key != booking_lock_key(clinic.tenant.id, clinic.doctor.id, MONDAY + timedelta(days=1))
    assert -(2 ** 63) <= key < 2 ** 63


async def test_time_with_utc_offset_is_rejected(book, clinic, publisher):
    with pytest.raises(ValidationError):
        await book_at(book, clinic, time(9, 15, tzinfo=timezone.utc))

    assert publisher.names == []


async def test_timestamps_are_stored_with_timezone(book, clinic):
    appointment = await book_at(book, clinic, time(9, 0))
    assert appointment.created_at.tzinfo is not None

    await book.cancel_appointment(appointment, clinic.admin.user_id)
    assert appointment.cancelled_at.tzinfo is not None
    for column in ("created_at", "updated_at", "cancelled_at", "checked_in_at", "completed_at"):
        assert Appointment.__table__.c[column].type.timezone is True


async def test_taken_appointment_number_is_regenerated(book, clinic, session, monkeypatch):
    numbers = iter(["APT-20300107-TAKEN001", "APT-20300107-TAKEN001", "APT-20300107-FRESH001"])
    monkeypatch.setattr(appointment_book, "generate_appointment_number", lambda day: next(numbers))

    first = await book_at(book, clinic, time(9, 0))
    second = await book_at(book, clinic, time(10, 0), patient=clinic.other_patient)
    await session.refresh(first)

    assert first.appointment_number == "APT-20300107-TAKEN001"
    assert second.appointment_number == "APT-20300107-FRESH001"


async def test_exhausted_appointment_numbers_are_retryable(book, clinic, session, monkeypatch):
    monkeypatch.setattr(appointment_book, "generate_appointment_number", lambda day: "APT-20300107-TAKEN001")
    await book_at(book, clinic, time(9, 0))

    with pytest.raises(TransientError) as exc:
        await book_at(book, clinic, time(10, 0), patient=clinic.other_patient)

    assert exc.value.status_code == 409
    rows = (await session.execute(select(Appointment))).scalars().all()
    await session.commit()
    assert len(rows) == 1


async def test_stalled_booking_lock_times_out(book, clinic, session, publisher, monkeypatch):
    async def stalled(doctor_id, day):
        await asyncio.sleep(1)

    monkeypatch.setattr(settings, "BOOKING_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(book, "_acquire_booking_lock", stalled)

    with pytest.raises(TransientError) as exc:
        await book_at(book, clinic, time(9, 0))

    assert exc.value.status_code == 409
    assert exc.value.headers == {"Retry-After": "1"}
    assert publisher.names == []
    rows = (await session.execute(select(Appointment))).scalars().all()
    await session.commit()
    assert rows == []


async def test_booking_while_database_is_locked_is_retryable(clinic, monkeypatch):
    # The SQLite busy timeout (5s) must fire before the booking timeout
    monkeypatch.setattr(settings, "BOOKING_TIMEOUT_SECONDS", 30)

    async with async_session() as holder:
        # BEGIN IMMEDIATE holds the write lock until this session rolls back
        await holder.execute(select(Tenant))
        async with async_session() as session:
            book = AppointmentBook(TenantScope(session, clinic.tenant.id))
            with pytest.raises(TransientError) as exc:
                await book_at(book, clinic, time(9, 0))
        await holder.rollback()

    assert exc.value.status_code == 409
    async with async_session() as session:
        rows = (await session.execute(select(Appointment))).scalars().all()
    assert rows == []


async def test_delete_removes_the_row_and_audits_it(book, clinic, session, publisher):
    appointment = await book_at(book, clinic, time(9, 0))

    await book.delete_appointment(appointment, clinic.admin.user_id)

    assert publisher.names == ["appointment.created", "appointment.deleted"]
    rows = (await session.execute(select(Appointment))).scalars().all()
    audit = (await session.execute(
        select(AuditLog).where(AuditLog.action == "appointment.deleted")
    )).scalars().one()
    await session.commit()
    assert rows == []
    assert audit.entity_id == appointment.id
    assert audit.payload["appointment_number"] == appointment.appointment_number
