from fastapi import APIRouter, Body, Depends, Query, status
from datetime import date
from typing import Optional
from uuid import UUID

from medislot.api.deps import get_current_actor, get_scheduling_service
from medislot.core.config import settings
from medislot.core.tenancy import Actor
from medislot.db.models import Appointment, AppointmentStatus, ConsultationType
from medislot.schemas.appointment import (
    AppointmentCreate,
    AppointmentEnvelope,
    AppointmentListEnvelope,
    AppointmentResponse,
    AppointmentUpdate,
    CancelRequest,
)
from medislot.services.appointment_book import AppointmentFilters
from medislot.services.scheduling_service import SchedulingService

router = APIRouter()

def envelope(appointment: Appointment, message: Optional[str] = None) -> AppointmentEnvelope:
    return AppointmentEnvelope(message=message, data=AppointmentResponse.model_validate(appointment))

@router.get("", response_model=AppointmentListEnvelope)
async def list_appointments(
    doctor_id: Optional[UUID] = None,
    patient_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: Optional[AppointmentStatus] = None,
    consultation_type: Optional[ConsultationType] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    filters = AppointmentFilters(
        doctor_id=doctor_id,
        patient_id=patient_id,
        date_from=date_from,
        date_to=date_to,
        status=status,
        consultation_type=consultation_type,
    )
    result = await service.list_appointments(actor, filters, page, limit)
    result["appointments"] = [AppointmentResponse.model_validate(a) for a in result["appointments"]]
    return AppointmentListEnvelope(data=result)

@router.get("/{appointment_id}", response_model=AppointmentEnvelope)
async def read_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    appointment = await service.get_appointment(actor, appointment_id)
    return envelope(appointment)

@router.post("", response_model=AppointmentEnvelope, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    request: AppointmentCreate,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    appointment = await service.create_appointment(actor, request.model_dump())
    return envelope(appointment, "Appointment created successfully")

@router.put("/{appointment_id}", response_model=AppointmentEnvelope)
async def update_appointment(
    appointment_id: UUID,
    request: AppointmentUpdate,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    # Only the free-text fields may be cleared with null
    changes = {
        key: value for key, value in request.model_dump(exclude_unset=True).items()
        if value is not None or key in ("reason", "notes", "location", "meeting_link")
    }
    appointment = await service.update_appointment(actor, appointment_id, changes)
    return envelope(appointment, "Appointment updated successfully")

@router.put("/{appointment_id}/confirm", response_model=AppointmentEnvelope)
async def confirm_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    appointment = await service.confirm_appointment(actor, appointment_id)
    return envelope(appointment, "Appointment confirmed successfully")

@router.put("/{appointment_id}/start", response_model=AppointmentEnvelope)
async def start_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    appointment = await service.start_appointment(actor, appointment_id)
    return envelope(appointment, "Appointment started successfully")

@router.put("/{appointment_id}/complete", response_model=AppointmentEnvelope)
async def complete_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    appointment = await service.complete_appointment(actor, appointment_id)
    return envelope(appointment, "Appointment completed successfully")

@router.put("/{appointment_id}/cancel", response_model=AppointmentEnvelope)
async def cancel_appointment(
    appointment_id: UUID,
    request: Optional[CancelRequest] = Body(default=None),
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    reason = request.reason if request else None
    appointment = await service.cancel_appointment(actor, appointment_id, reason)
    return envelope(appointment, "Appointment cancelled successfully")

@router.put("/{appointment_id}/no-show", response_model=AppointmentEnvelope)
async def mark_no_show(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    appointment = await service.mark_no_show(actor, appointment_id)
    return envelope(appointment, "Appointment marked as no-show")

@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    await service.delete_appointment(actor, appointment_id)
    return {"success": True, "message": "Appointment deleted successfully"}
