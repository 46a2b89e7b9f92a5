from sqlmodel import Field, Relationship
from sqlalchemy import Index
from typing import Optional, TYPE_CHECKING
from datetime import date, datetime, time, timedelta
from enum import Enum
from uuid import UUID, uuid4

from .mixins import TenantOwned, timestamp_field

if TYPE_CHECKING:
    from .doctor import Doctor
    from .patient import Patient

class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "In_Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No_Show"

# Statuses that still hold their slot when a new booking is checked
ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)
TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)

class ConsultationType(str, Enum):
    IN_PERSON = "In-Person"
    ONLINE = "Online"

class Priority(str, Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    URGENT = "Urgent"

class Appointment(TenantOwned, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_tenant_doctor_date", "tenant_id", "doctor_id", "appointment_date"),
        Index("ix_appointments_patient_doctor", "patient_id", "doctor_id"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    appointment_number: str = Field(unique=True, index=True, max_length=50)
    patient_id: UUID = Field(foreign_key="patients.id")
    doctor_id: UUID = Field(foreign_key="doctors.id")
    appointment_date: date
    appointment_time: time
    duration_minutes: int = Field(default=30)
    appointment_type: str = Field(max_length=100)
    consultation_type: ConsultationType = Field(default=ConsultationType.IN_PERSON)
    reason: Optional[str] = None
    notes: Optional[str] = None
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED, index=True)
    priority: Priority = Field(default=Priority.NORMAL)
    location: Optional[str] = Field(default=None, max_length=200)
    meeting_link: Optional[str] = Field(default=None, max_length=500)
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[UUID] = Field(default=None, foreign_key="users.id")
    cancelled_at: Optional[datetime] = timestamp_field(nullable=True)
    checked_in_at: Optional[datetime] = timestamp_field(nullable=True)
    completed_at: Optional[datetime] = timestamp_field(nullable=True)
    created_by: Optional[UUID] = Field(default=None, foreign_key="users.id")
    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()

    doctor: "Doctor" = Relationship(back_populates="appointments")
    patient: "Patient" = Relationship(back_populates="appointments")

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.appointment_time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
