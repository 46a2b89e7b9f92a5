import asyncio
import hashlib
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import func, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError

from medislot.core.config import settings
from medislot.core.exceptions import ConflictError, InvalidStateError, TransientError, ValidationError
from medislot.core.logger import logger
from medislot.core.tenancy import TenantScope
from medislot.core.utils import generate_appointment_number, utcnow
from medislot.db.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    AuditLog,
    ConsultationType,
    Doctor,
    Patient,
    Priority,
)
from medislot.services.availability_service import templates_for_day
from medislot.services.events import AppointmentEventPublisher
from medislot.services.slot_generator import BusyInterval, SlotWindow, count_overlapping

T = TypeVar("T")

ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED},
}

RESCHEDULABLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

DETAIL_FIELDS = (
    "appointment_type",
    "consultation_type",
    "reason",
    "notes",
    "priority",
    "location",
    "meeting_link",
)
TIMING_FIELDS = ("appointment_date", "appointment_time", "duration_minutes")

# Fresh numbers tried when a generated one is already taken
APPOINTMENT_NUMBER_ATTEMPTS = 3


class DuplicateAppointmentNumber(Exception):
    pass


@dataclass(frozen=True)
class AppointmentFilters:
    doctor_id: Optional[UUID] = None
    patient_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: Optional[AppointmentStatus] = None
    consultation_type: Optional[ConsultationType] = None


def booking_lock_key(tenant_id: UUID, doctor_id: UUID, day: date) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(f"{tenant_id}:{doctor_id}:{day.isoformat()}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class AppointmentBook:
    """Authoritative store of appointments for one tenant.

    Owns the conflict-check-and-insert transaction and the status machine.
    Authorization happens in SchedulingService before any method here runs.
    """

    def __init__(self, scope: TenantScope, publisher: Optional[AppointmentEventPublisher] = None):
        self.scope = scope
        self.session = scope.session
        self.publisher = publisher

    # Reads

    async def get(self, appointment_id: UUID) -> Appointment:
        return await self.scope.get_or_404(Appointment, appointment_id, "Appointment not found")

    async def busy_intervals(self, doctor_id: UUID, day: date) -> List[BusyInterval]:
        """Intervals that make a slot unavailable in listings.

        Everything except cancelled appointments: completed and no-show rows
        already used their time.
        """
        stmt = self.scope.select(
            Appointment,
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == day,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        result = await self.session.execute(stmt)
        return [
            BusyInterval(a.starts_at, a.ends_at)
            for a in result.scalars().all()
        ]

    async def list_appointments(
        self, filters: AppointmentFilters, page: int = 1, limit: int = 10
    ) -> Tuple[List[Appointment], int]:
        criteria = []
        if filters.doctor_id:
            criteria.append(Appointment.doctor_id == filters.doctor_id)
        if filters.patient_id:
            criteria.append(Appointment.patient_id == filters.patient_id)
        if filters.status:
            criteria.append(Appointment.status == filters.status)
        if filters.consultation_type:
            criteria.append(Appointment.consultation_type == filters.consultation_type)
        if filters.date_from:
            criteria.append(Appointment.appointment_date >= filters.date_from)
        if filters.date_to:
            criteria.append(Appointment.appointment_date <= filters.date_to)

        total = (await self.session.execute(self.scope.count(Appointment, *criteria))).scalar() or 0

        stmt = (
            self.scope.select(Appointment, *criteria)
            .order_by(Appointment.appointment_date, Appointment.appointment_time)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all(), total

    # Booking

    async def book_appointment(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        appointment_date: date,
        appointment_time: time,
        duration_minutes: int = 30,
        *,
        appointment_type: str,
        created_by: Optional[UUID] = None,
        consultation_type: ConsultationType = ConsultationType.IN_PERSON,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        priority: Priority = Priority.NORMAL,
        location: Optional[str] = None,
        meeting_link: Optional[str] = None,
    ) -> Appointment:
        if duration_minutes is None or duration_minutes <= 0:
            raise ValidationError("Duration must be a positive number of minutes")

        appointment = Appointment(
            appointment_number=generate_appointment_number(appointment_date),
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            duration_minutes=duration_minutes,
            appointment_type=appointment_type,
            consultation_type=consultation_type,
            reason=reason,
            notes=notes,
            priority=priority,
            location=location,
            meeting_link=meeting_link,
            status=AppointmentStatus.SCHEDULED,
            created_by=created_by,
        )

        async def insert() -> Appointment:
            await self.scope.get_or_404(Patient, patient_id, "Patient not found")
            await self.scope.get_or_404(Doctor, doctor_id, "Doctor not found")
            await self._ensure_available(doctor_id, appointment_date, appointment_time, duration_minutes)
            self.scope.add(appointment)
            self._audit(created_by, "appointment.created", appointment.id, {
                "appointment_number": appointment.appointment_number,
                "doctor_id": str(doctor_id),
                "patient_id": str(patient_id),
                "appointment_date": appointment_date.isoformat(),
                "appointment_time": appointment_time.strftime("%H:%M"),
                "duration_minutes": duration_minutes,
            })
            await self.session.flush()
            return appointment

        logger.info(
            f"Booking doctor {doctor_id} for patient {patient_id} on {appointment_date} "
            f"at {appointment_time:%H:%M} ({duration_minutes} min) in tenant {self.scope.tenant_id}"
        )
        for attempt in range(1, APPOINTMENT_NUMBER_ATTEMPTS + 1):
            try:
                await self._within_booking_lock(doctor_id, appointment_date, insert)
                break
            except DuplicateAppointmentNumber:
                logger.warning(
                    f"Appointment number {appointment.appointment_number} already taken (attempt {attempt})"
                )
                appointment.appointment_number = generate_appointment_number(appointment_date)
        else:
            raise TransientError("Could not allocate an appointment number, please retry")
        logger.info(f"Appointment {appointment.appointment_number} booked")
        await self._publish("appointment.created", appointment, created_by)
        return appointment

    async def update_appointment(self, appointment: Appointment, changes: dict, actor_id: Optional[UUID] = None) -> Appointment:
        """Apply detail changes and, when date/time/duration move, reschedule.

        A reschedule reruns the overlap check under the booking lock of the
        new date, ignoring the appointment's own current interval.
        """
        unknown = set(changes) - set(DETAIL_FIELDS) - set(TIMING_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        await self.session.refresh(appointment)

        timing = {k: v for k, v in changes.items() if k in TIMING_FIELDS and v is not None}
        moves = any(getattr(appointment, k) != v for k, v in timing.items())

        new_date = timing.get("appointment_date", appointment.appointment_date)
        new_time = timing.get("appointment_time", appointment.appointment_time)
        new_duration = timing.get("duration_minutes", appointment.duration_minutes)
        if new_duration <= 0:
            raise ValidationError("Duration must be a positive number of minutes")

        async def apply() -> Appointment:
            await self.session.refresh(appointment, with_for_update=True)
            if appointment.is_terminal:
                raise InvalidStateError(f"Cannot update an appointment that is {appointment.status.value}")
            if moves:
                if appointment.status not in RESCHEDULABLE_STATUSES:
                    raise InvalidStateError(
                        f"Cannot reschedule an appointment that is {appointment.status.value}"
                    )
                await self._ensure_available(
                    appointment.doctor_id, new_date, new_time, new_duration, exclude_id=appointment.id
                )
            for key, value in changes.items():
                if key in DETAIL_FIELDS:
                    setattr(appointment, key, value)
            appointment.appointment_date = new_date
            appointment.appointment_time = new_time
            appointment.duration_minutes = new_duration
            appointment.updated_at = utcnow()
            self._audit(actor_id, "appointment.rescheduled" if moves else "appointment.updated", appointment.id, {
                key: (value.isoformat() if hasattr(value, "isoformat") else getattr(value, "value", value))
                for key, value in changes.items()
            })
            return appointment

        if moves:
            await self._within_booking_lock(appointment.doctor_id, new_date, apply)
            logger.info(f"Appointment {appointment.appointment_number} moved to {new_date} {new_time:%H:%M}")
            await self._publish("appointment.rescheduled", appointment, actor_id)
        else:
            await self._commit(apply)
            await self._publish("appointment.updated", appointment, actor_id)
        return appointment

    async def delete_appointment(self, appointment: Appointment, actor_id: Optional[UUID] = None) -> Appointment:
        async def apply() -> Appointment:
            await self.session.delete(appointment)
            self._audit(actor_id, "appointment.deleted", appointment.id, {
                "appointment_number": appointment.appointment_number,
                "status": appointment.status.value,
            })
            return appointment

        await self._commit(apply)
        logger.info(f"Appointment {appointment.appointment_number} deleted")
        await self._publish("appointment.deleted", appointment, actor_id)
        return appointment

    # Status machine

    async def confirm_appointment(self, appointment: Appointment, actor_id: Optional[UUID] = None) -> Appointment:
        return await self._transition(appointment, AppointmentStatus.CONFIRMED, actor_id)

    async def start_appointment(self, appointment: Appointment, actor_id: Optional[UUID] = None) -> Appointment:
        return await self._transition(
            appointment, AppointmentStatus.IN_PROGRESS, actor_id, checked_in_at=utcnow()
        )

    async def complete_appointment(self, appointment: Appointment, actor_id: Optional[UUID] = None) -> Appointment:
        return await self._transition(
            appointment, AppointmentStatus.COMPLETED, actor_id, completed_at=utcnow()
        )

    async def mark_no_show(self, appointment: Appointment, actor_id: Optional[UUID] = None) -> Appointment:
        return await self._transition(appointment, AppointmentStatus.NO_SHOW, actor_id)

    async def cancel_appointment(
        self, appointment: Appointment, actor_id: Optional[UUID] = None, reason: Optional[str] = None
    ) -> Appointment:
        return await self._transition(
            appointment,
            AppointmentStatus.CANCELLED,
            actor_id,
            cancelled_by=actor_id,
            cancelled_at=utcnow(),
            cancellation_reason=reason,
        )

    async def _transition(
        self, appointment: Appointment, target: AppointmentStatus, actor_id: Optional[UUID], **stamps
    ) -> Appointment:
        previous = {}

        async def apply() -> Appointment:
            # Reload under a row lock so two concurrent transitions serialize
            await self.session.refresh(appointment, with_for_update=True)
            check_transition(appointment.status, target)
            previous["status"] = appointment.status
            appointment.status = target
            for key, value in stamps.items():
                setattr(appointment, key, value)
            appointment.updated_at = utcnow()
            self._audit(actor_id, f"appointment.{target.value.lower()}", appointment.id, {
                "from": previous["status"].value,
                "to": target.value,
                "reason": stamps.get("cancellation_reason"),
            })
            return appointment

        await self._commit(apply)
        logger.info(
            f"Appointment {appointment.appointment_number} {previous['status'].value} -> {target.value}"
        )
        await self._publish(f"appointment.{target.value.lower()}", appointment, actor_id)
        return appointment

    # Internals

    async def _ensure_available(
        self,
        doctor_id: UUID,
        day: date,
        start_time: time,
        duration_minutes: int,
        exclude_id: Optional[UUID] = None,
    ) -> None:
        if start_time.tzinfo is not None:
            raise ValidationError("Appointment time must not include a UTC offset")
        start = datetime.combine(day, start_time)
        end = start + timedelta(minutes=duration_minutes)
        if end.date() != day:
            raise ValidationError("Appointment must end on the day it starts")

        stmt = self.scope.select(
            Appointment,
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == day,
            Appointment.status.in_(ACTIVE_STATUSES),
        )
        if exclude_id is not None:
            stmt = stmt.where(Appointment.id != exclude_id)
        result = await self.session.execute(stmt)
        busy = [
            BusyInterval(a.starts_at, a.ends_at)
            for a in result.scalars().all()
        ]

        overlapping = count_overlapping(busy, start, end)
        if overlapping == 0:
            return
        capacity = await self._capacity_for(doctor_id, day, start, end)
        if overlapping >= capacity:
            logger.warning(
                f"Conflict for doctor {doctor_id} on {day} at {start_time:%H:%M}: "
                f"{overlapping} overlapping booking(s), capacity {capacity}"
            )
            raise ConflictError("Doctor is not available at the selected time")

    async def _capacity_for(self, doctor_id: UUID, day: date, start: datetime, end: datetime) -> int:
        for template in await templates_for_day(self.scope, doctor_id, day):
            window = SlotWindow.from_template(template)
            if window.covers(day, start, end):
                return window.max_concurrent
        return 1

    async def _acquire_booking_lock(self, doctor_id: UUID, day: date) -> None:
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            timeout_ms = int(settings.BOOKING_TIMEOUT_SECONDS * 1000)
            await self.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
            await self.session.execute(
                select(func.pg_advisory_xact_lock(booking_lock_key(self.scope.tenant_id, doctor_id, day)))
            )
        elif dialect == "sqlite":
            # Transactions open with BEGIN IMMEDIATE; touching the doctor row starts one
            await self.session.execute(self.scope.select(Doctor, Doctor.id == doctor_id))
        else:
            await self.session.execute(
                self.scope.select(Doctor, Doctor.id == doctor_id).with_for_update()
            )

    async def _within_booking_lock(self, doctor_id: UUID, day: date, work: Callable[[], Awaitable[T]]) -> T:
        async def locked() -> T:
            await self._acquire_booking_lock(doctor_id, day)
            return await work()

        try:
            return await asyncio.wait_for(self._commit(locked), timeout=settings.BOOKING_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            await self.session.rollback()
            logger.warning(f"Booking lock for doctor {doctor_id} on {day} timed out")
            raise TransientError()

    async def _commit(self, work: Callable[[], Awaitable[T]]) -> T:
        """Run ``work`` and commit, or roll everything back.

        Abort means no partial row: the check and the write share the
        transaction.
        """
        try:
            result = await work()
            await self.session.commit()
            return result
        except HTTPException:
            await self.session.rollback()
            raise
        except IntegrityError as exc:
            await self.session.rollback()
            if "appointment_number" in str(exc.orig):
                raise DuplicateAppointmentNumber() from exc
            logger.warning(f"Integrity error while saving appointment: {exc.orig}")
            raise ConflictError("Doctor is not available at the selected time")
        except DBAPIError as exc:
            # lock timeout, deadlock, serialization failure, "database is locked"
            await self.session.rollback()
            logger.warning(f"Transient database error while booking: {exc.orig}")
            raise TransientError()
        except asyncio.CancelledError:
            await self.session.rollback()
            raise

    def _audit(self, actor_id: Optional[UUID], action: str, entity_id: UUID, payload: dict) -> None:
        self.scope.add(AuditLog(actor_id=actor_id, action=action, entity_id=entity_id, payload=payload))

    async def _publish(self, event: str, appointment: Appointment, actor_id: Optional[UUID]) -> None:
        if self.publisher is not None:
            await self.publisher.publish(event, appointment, actor_id)


def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if current == target == AppointmentStatus.CANCELLED:
        raise InvalidStateError("Appointment is already cancelled")
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidStateError(
            f"Cannot change appointment status from {current.value} to {target.value}"
        )
