from fastapi import APIRouter, Depends, Query, status
from datetime import date
from typing import Optional
from uuid import UUID

from medislot.api.deps import get_current_actor, get_scheduling_service
from medislot.core.tenancy import Actor
from medislot.db.models import Weekday
from medislot.schemas.availability import (
    AvailableSlotsResponse,
    TemplateBulkCreate,
    TemplateCreateRequest,
    TemplateResponse,
    TemplateUpdate,
)
from medislot.services.scheduling_service import SchedulingService

router = APIRouter()

@router.get("/available", response_model=AvailableSlotsResponse)
async def get_available_slots(
    doctor_id: UUID,
    date: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    slots = await service.get_available_slots(actor, doctor_id, date)
    return AvailableSlotsResponse(**slots)

@router.get("")
async def list_time_slots(
    doctor_id: Optional[UUID] = None,
    day_of_week: Optional[Weekday] = None,
    on_date: Optional[date] = Query(default=None, alias="date"),
    include_inactive: bool = False,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    templates = await service.list_templates(actor, doctor_id, day_of_week, on_date, include_inactive)
    return {
        "success": True,
        "count": len(templates),
        "data": [TemplateResponse.from_template(t) for t in templates],
    }

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_time_slot(
    request: TemplateCreateRequest,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    values = request.to_values()
    doctor_id = values.pop("doctor_id")
    template = await service.create_template(actor, doctor_id, values)
    return {
        "success": True,
        "message": "Time slot created successfully",
        "data": TemplateResponse.from_template(template),
    }

@router.post("/bulk", status_code=status.HTTP_201_CREATED)
async def bulk_create_time_slots(
    request: TemplateBulkCreate,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    items = [slot.to_values() for slot in request.time_slots]
    templates = await service.bulk_create_templates(actor, request.doctor_id, items)
    return {
        "success": True,
        "message": f"{len(templates)} time slots created successfully",
        "data": [TemplateResponse.from_template(t) for t in templates],
    }

@router.put("/{time_slot_id}")
async def update_time_slot(
    time_slot_id: UUID,
    request: TemplateUpdate,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    template = await service.update_template(actor, time_slot_id, request.to_changes())
    return {
        "success": True,
        "message": "Time slot updated successfully",
        "data": TemplateResponse.from_template(template),
    }

@router.delete("/{time_slot_id}")
async def deactivate_time_slot(
    time_slot_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: SchedulingService = Depends(get_scheduling_service)
):
    template = await service.deactivate_template(actor, time_slot_id)
    return {
        "success": True,
        "message": "Time slot deactivated successfully",
        "data": TemplateResponse.from_template(template),
    }
