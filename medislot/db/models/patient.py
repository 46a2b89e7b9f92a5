from sqlmodel import Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from uuid import UUID, uuid4

from .mixins import TenantOwned, timestamp_field

if TYPE_CHECKING:
    from .appointment import Appointment

class Patient(TenantOwned, table=True):
    __tablename__ = "patients"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, foreign_key="users.id", index=True)
    patient_code: Optional[str] = Field(default=None, index=True)
    name: str
    phone: Optional[str] = None
    created_at: datetime = timestamp_field()

    appointments: List["Appointment"] = Relationship(back_populates="patient")
