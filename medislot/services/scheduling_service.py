import math
from datetime import date
from itertools import chain
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from medislot.core.exceptions import ValidationError
from medislot.core.logger import logger
from medislot.core.tenancy import Actor, TenantScope
from medislot.db.models import Appointment, AvailabilityTemplate, Doctor, Weekday
from medislot.services.appointment_book import AppointmentBook, AppointmentFilters
from medislot.services.availability_service import AvailabilityService, templates_for_day
from medislot.services.events import AppointmentEventPublisher
from medislot.services.policy import Action, authorize, restrict_listing, restrict_template_listing
from medislot.services.slot_generator import generate_slots


class SchedulingService:
    """Entry point for every scheduling operation a caller can request.

    Each method resolves the actor's tenant scope, runs the policy check and
    only then hands over to AppointmentBook or AvailabilityService.
    """

    def __init__(self, session: AsyncSession, publisher: Optional[AppointmentEventPublisher] = None):
        self.session = session
        self.publisher = publisher

    def _scope(self, actor: Actor) -> TenantScope:
        return TenantScope.for_actor(self.session, actor)

    def _book(self, actor: Actor) -> AppointmentBook:
        return AppointmentBook(self._scope(actor), self.publisher)

    def _availability(self, actor: Actor) -> AvailabilityService:
        return AvailabilityService(self._scope(actor))

    # Slots

    async def get_available_slots(self, actor: Actor, doctor_id: UUID, day: date) -> dict:
        authorize(actor, Action.VIEW_SLOTS, doctor_id=doctor_id)
        scope = self._scope(actor)
        await scope.get_or_404(Doctor, doctor_id, "Doctor not found")

        templates = await templates_for_day(scope, doctor_id, day)
        busy = await AppointmentBook(scope).busy_intervals(doctor_id, day)
        sequences = [generate_slots(template, day, busy) for template in templates]
        slots = sorted(chain.from_iterable(sequences), key=lambda slot: slot.start)

        return {
            "date": day.isoformat(),
            "dayOfWeek": Weekday.of(day).value,
            "count": len(slots),
            "data": [slot.as_dict() for slot in slots],
        }

    # Templates

    async def list_templates(
        self,
        actor: Actor,
        doctor_id: Optional[UUID] = None,
        day_of_week: Optional[Weekday] = None,
        on_date: Optional[date] = None,
        include_inactive: bool = False,
    ) -> List[AvailabilityTemplate]:
        authorize(actor, Action.VIEW_TEMPLATES)
        doctor_id = restrict_template_listing(actor, doctor_id)
        if include_inactive and not (actor.is_admin or actor.is_doctor):
            include_inactive = False
        return await self._availability(actor).list_templates(doctor_id, day_of_week, on_date, include_inactive)

    async def create_template(self, actor: Actor, doctor_id: Optional[UUID], item: dict) -> AvailabilityTemplate:
        created = await self.bulk_create_templates(actor, doctor_id, [item])
        return created[0]

    async def bulk_create_templates(
        self, actor: Actor, doctor_id: Optional[UUID], items: List[dict]
    ) -> List[AvailabilityTemplate]:
        doctor_id = self._template_owner(actor, doctor_id)
        authorize(actor, Action.MANAGE_TEMPLATE, doctor_id=doctor_id)
        return await self._availability(actor).create_templates(doctor_id, items, actor.user_id)

    async def update_template(self, actor: Actor, template_id: UUID, changes: dict) -> AvailabilityTemplate:
        service = self._availability(actor)
        template = await service.get_template(template_id)
        authorize(actor, Action.MANAGE_TEMPLATE, doctor_id=template.doctor_id)
        return await service.update_template(template, changes, actor.user_id)

    async def deactivate_template(self, actor: Actor, template_id: UUID) -> AvailabilityTemplate:
        service = self._availability(actor)
        template = await service.get_template(template_id)
        authorize(actor, Action.MANAGE_TEMPLATE, doctor_id=template.doctor_id)
        return await service.deactivate_template(template, actor.user_id)

    def _template_owner(self, actor: Actor, doctor_id: Optional[UUID]) -> UUID:
        # Doctors manage their own templates and may omit the doctor id
        if doctor_id is None and actor.is_doctor:
            doctor_id = actor.doctor_id
        if doctor_id is None:
            raise ValidationError("doctor_id is required")
        return doctor_id

    # Appointments

    async def create_appointment(self, actor: Actor, request: dict) -> Appointment:
        data = dict(request)
        patient_id = data.pop("patient_id", None)
        if patient_id is None and actor.is_patient:
            patient_id = actor.patient_id
        if patient_id is None:
            raise ValidationError("patient_id is required")

        authorize(actor, Action.BOOK, patient_id=patient_id, doctor_id=data.get("doctor_id"))
        return await self._book(actor).book_appointment(
            patient_id=patient_id, created_by=actor.user_id, **data
        )

    async def list_appointments(
        self, actor: Actor, filters: AppointmentFilters, page: int = 1, limit: int = 10
    ) -> dict:
        filters = restrict_listing(actor, filters)
        page = max(page, 1)
        rows, total = await self._book(actor).list_appointments(filters, page, limit)
        return {
            "appointments": rows,
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total / limit) if limit else 0,
                "total_records": total,
                "per_page": limit,
            },
        }

    async def get_appointment(self, actor: Actor, appointment_id: UUID) -> Appointment:
        appointment = await self._book(actor).get(appointment_id)
        authorize(actor, Action.VIEW_APPOINTMENT, appointment=appointment)
        return appointment

    async def update_appointment(self, actor: Actor, appointment_id: UUID, changes: dict) -> Appointment:
        book = self._book(actor)
        appointment = await book.get(appointment_id)
        authorize(actor, Action.UPDATE_APPOINTMENT, appointment=appointment)
        return await book.update_appointment(appointment, changes, actor.user_id)

    async def cancel_appointment(
        self, actor: Actor, appointment_id: UUID, reason: Optional[str] = None
    ) -> Appointment:
        book = self._book(actor)
        appointment = await book.get(appointment_id)
        authorize(actor, Action.CANCEL, appointment=appointment)
        logger.info(f"User {actor.user_id} cancelling appointment {appointment.appointment_number}")
        return await book.cancel_appointment(appointment, actor.user_id, reason)

    async def delete_appointment(self, actor: Actor, appointment_id: UUID) -> Appointment:
        authorize(actor, Action.DELETE)
        book = self._book(actor)
        appointment = await book.get(appointment_id)
        logger.info(f"User {actor.user_id} deleting appointment {appointment.appointment_number}")
        return await book.delete_appointment(appointment, actor.user_id)

    async def confirm_appointment(self, actor: Actor, appointment_id: UUID) -> Appointment:
        book = self._book(actor)
        appointment = await book.get(appointment_id)
        authorize(actor, Action.CONFIRM, appointment=appointment)
        return await book.confirm_appointment(appointment, actor.user_id)

    async def start_appointment(self, actor: Actor, appointment_id: UUID) -> Appointment:
        book = self._book(actor)
        appointment = await book.get(appointment_id)
        authorize(actor, Action.START, appointment=appointment)
        return await book.start_appointment(appointment, actor.user_id)

    async def complete_appointment(self, actor: Actor, appointment_id: UUID) -> Appointment:
        book = self._book(actor)
        appointment = await book.get(appointment_id)
        authorize(actor, Action.COMPLETE, appointment=appointment)
        return await book.complete_appointment(appointment, actor.user_id)

    async def mark_no_show(self, actor: Actor, appointment_id: UUID) -> Appointment:
        book = self._book(actor)
        appointment = await book.get(appointment_id)
        authorize(actor, Action.NO_SHOW, appointment=appointment)
        return await book.mark_no_show(appointment, actor.user_id)
