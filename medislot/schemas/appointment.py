from pydantic import BaseModel, Field
from uuid import UUID
from datetime import date, datetime, time
from typing import Optional, List

from medislot.core.config import settings
from medislot.db.models import AppointmentStatus, ConsultationType, Priority
from medislot.schemas.common import LocalTime, MeetingLink

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 180

class AppointmentCreate(BaseModel):
    # Patients may leave patient_id out; it resolves to their own profile
    patient_id: Optional[UUID] = None
    doctor_id: UUID
    appointment_date: date
    appointment_time: LocalTime
    duration_minutes: int = Field(
        default=settings.DEFAULT_SLOT_DURATION_MINUTES, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES
    )
    appointment_type: str = Field(min_length=1, max_length=100)
    consultation_type: ConsultationType = ConsultationType.IN_PERSON
    reason: Optional[str] = None
    notes: Optional[str] = None
    priority: Priority = Priority.NORMAL
    location: Optional[str] = Field(default=None, max_length=200)
    meeting_link: Optional[MeetingLink] = None

class AppointmentUpdate(BaseModel):
    appointment_date: Optional[date] = None
    appointment_time: Optional[LocalTime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)
    appointment_type: Optional[str] = Field(default=None, min_length=1, max_length=100)
    consultation_type: Optional[ConsultationType] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    priority: Optional[Priority] = None
    location: Optional[str] = Field(default=None, max_length=200)
    meeting_link: Optional[MeetingLink] = None

class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)

class AppointmentResponse(BaseModel):
    id: UUID
    appointment_number: str
    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    appointment_type: str
    consultation_type: ConsultationType
    status: AppointmentStatus
    priority: Priority
    reason: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[UUID] = None
    cancelled_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    per_page: int

class AppointmentList(BaseModel):
    appointments: List[AppointmentResponse]
    pagination: Pagination

class AppointmentEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: AppointmentResponse

class AppointmentListEnvelope(BaseModel):
    success: bool = True
    data: AppointmentList
