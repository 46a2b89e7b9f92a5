from sqlmodel import Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from .mixins import TenantOwned, timestamp_field

if TYPE_CHECKING:
    from .availability import AvailabilityTemplate
    from .appointment import Appointment

class Doctor(TenantOwned, table=True):
    __tablename__ = "doctors"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, foreign_key="users.id", index=True)
    name: str
    specialization: Optional[str] = None
    consultation_fee: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    created_at: datetime = timestamp_field()

    availability_templates: List["AvailabilityTemplate"] = Relationship(back_populates="doctor")
    appointments: List["Appointment"] = Relationship(back_populates="doctor")
