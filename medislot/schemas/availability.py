from pydantic import BaseModel, Field
from uuid import UUID
from datetime import date, time
from typing import Annotated, List, Literal, Optional, Union

from medislot.core.config import settings
from medislot.db.models import (
    AvailabilityTemplate,
    DateOverride,
    Recurring,
    TemplateConsultationType,
    TemplateRule,
    Weekday,
)
from medislot.schemas.common import LocalTime

class RecurringRule(BaseModel):
    kind: Literal["recurring"] = "recurring"
    day_of_week: Weekday

    def to_rule(self) -> TemplateRule:
        return Recurring(weekday=self.day_of_week)

class DateOverrideRule(BaseModel):
    kind: Literal["date_override"] = "date_override"
    specific_date: date

    def to_rule(self) -> TemplateRule:
        return DateOverride(on=self.specific_date)

Rule = Annotated[Union[RecurringRule, DateOverrideRule], Field(discriminator="kind")]

class TemplateCreate(BaseModel):
    rule: Rule
    start_time: LocalTime
    end_time: LocalTime
    slot_duration_minutes: int = Field(default=settings.DEFAULT_SLOT_DURATION_MINUTES, gt=0, le=480)
    break_start: Optional[LocalTime] = None
    break_end: Optional[LocalTime] = None
    max_concurrent: int = Field(default=1, ge=1)
    consultation_type: TemplateConsultationType = TemplateConsultationType.IN_PERSON
    location: Optional[str] = Field(default="Clinic", max_length=100)
    notes: Optional[str] = None

    def to_values(self) -> dict:
        values = self.model_dump(exclude={"rule"})
        values["rule"] = self.rule.to_rule()
        return values

class TemplateCreateRequest(TemplateCreate):
    # Doctors may omit it; it defaults to their own profile
    doctor_id: Optional[UUID] = None

class TemplateBulkCreate(BaseModel):
    doctor_id: Optional[UUID] = None
    time_slots: List[TemplateCreate] = Field(min_length=1)

class TemplateUpdate(BaseModel):
    rule: Optional[Rule] = None
    start_time: Optional[LocalTime] = None
    end_time: Optional[LocalTime] = None
    slot_duration_minutes: Optional[int] = Field(default=None, gt=0, le=480)
    break_start: Optional[LocalTime] = None
    break_end: Optional[LocalTime] = None
    max_concurrent: Optional[int] = Field(default=None, ge=1)
    consultation_type: Optional[TemplateConsultationType] = None
    location: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None
    is_active: Optional[bool] = None

    def to_changes(self) -> dict:
        # Break times may be cleared explicitly with null, other fields may not
        changes = self.model_dump(exclude_unset=True, exclude={"rule"})
        changes = {
            key: value for key, value in changes.items()
            if value is not None or key in ("break_start", "break_end", "notes", "location")
        }
        if self.rule is not None:
            changes["rule"] = self.rule.to_rule()
        return changes

class TemplateResponse(BaseModel):
    id: UUID
    doctor_id: UUID
    rule: Rule
    start_time: time
    end_time: time
    slot_duration_minutes: int
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    max_concurrent: int
    consultation_type: TemplateConsultationType
    location: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool

    @classmethod
    def from_template(cls, template: AvailabilityTemplate) -> "TemplateResponse":
        rule = template.rule
        if isinstance(rule, Recurring):
            rule_out = RecurringRule(day_of_week=rule.weekday)
        else:
            rule_out = DateOverrideRule(specific_date=rule.on)
        return cls(
            id=template.id,
            doctor_id=template.doctor_id,
            rule=rule_out,
            start_time=template.start_time,
            end_time=template.end_time,
            slot_duration_minutes=template.slot_duration_minutes,
            break_start=template.break_start,
            break_end=template.break_end,
            max_concurrent=template.max_concurrent,
            consultation_type=template.consultation_type,
            location=template.location,
            notes=template.notes,
            is_active=template.is_active,
        )

class TimeSlotOut(BaseModel):
    time: str
    datetime: str
    duration: int
    available: bool

class AvailableSlotsResponse(BaseModel):
    success: bool = True
    date: str
    dayOfWeek: Weekday
    count: int
    data: List[TimeSlotOut]
