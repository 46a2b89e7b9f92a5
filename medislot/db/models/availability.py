from dataclasses import dataclass
from sqlmodel import Field, Relationship
from sqlalchemy import CheckConstraint, Index
from typing import Optional, Union, TYPE_CHECKING
from datetime import date, datetime, time
from enum import Enum
from uuid import UUID, uuid4

from .mixins import TenantOwned, timestamp_field

if TYPE_CHECKING:
    from .doctor import Doctor

class Weekday(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]

class TemplateConsultationType(str, Enum):
    IN_PERSON = "In-Person"
    ONLINE = "Online"
    BOTH = "Both"

@dataclass(frozen=True)
class Recurring:
    weekday: Weekday

    def matches(self, day: date) -> bool:
        return Weekday.of(day) == self.weekday

@dataclass(frozen=True)
class DateOverride:
    on: date

    def matches(self, day: date) -> bool:
        return day == self.on

TemplateRule = Union[Recurring, DateOverride]

class AvailabilityTemplate(TenantOwned, table=True):
    """A doctor's declared open hours for one weekday or one specific date."""
    __tablename__ = "doctor_time_slots"
    __table_args__ = (
        CheckConstraint(
            "(is_recurring AND day_of_week IS NOT NULL AND specific_date IS NULL)"
            " OR (NOT is_recurring AND specific_date IS NOT NULL AND day_of_week IS NULL)",
            name="ck_doctor_time_slots_single_rule",
        ),
        CheckConstraint("slot_duration_minutes > 0", name="ck_doctor_time_slots_duration"),
        CheckConstraint("max_concurrent >= 1", name="ck_doctor_time_slots_capacity"),
        Index("ix_doctor_time_slots_doctor_day", "doctor_id", "day_of_week"),
        Index("ix_doctor_time_slots_doctor_date", "doctor_id", "specific_date"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    doctor_id: UUID = Field(foreign_key="doctors.id")
    is_recurring: bool = Field(default=True)
    day_of_week: Optional[Weekday] = None
    specific_date: Optional[date] = None
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(default=30)
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    max_concurrent: int = Field(default=1)
    consultation_type: TemplateConsultationType = Field(default=TemplateConsultationType.IN_PERSON)
    location: Optional[str] = Field(default="Clinic", max_length=100)
    notes: Optional[str] = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()

    doctor: "Doctor" = Relationship(back_populates="availability_templates")

    @property
    def rule(self) -> TemplateRule:
        if self.is_recurring:
            return Recurring(weekday=Weekday(self.day_of_week))
        return DateOverride(on=self.specific_date)

    def apply_rule(self, rule: TemplateRule) -> None:
        if isinstance(rule, Recurring):
            self.is_recurring = True
            self.day_of_week = rule.weekday
            self.specific_date = None
        else:
            self.is_recurring = False
            self.day_of_week = None
            self.specific_date = rule.on
