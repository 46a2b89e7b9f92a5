from datetime import date, datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlmodel import and_, or_

from medislot.core.exceptions import ValidationError
from medislot.core.logger import logger
from medislot.core.tenancy import TenantScope
from medislot.core.utils import intervals_overlap, utcnow
from medislot.db.models import (
    AuditLog,
    AvailabilityTemplate,
    Doctor,
    Recurring,
    TemplateRule,
    Weekday,
)
from medislot.services.slot_generator import check_window

TEMPLATE_FIELDS = (
    "start_time",
    "end_time",
    "slot_duration_minutes",
    "break_start",
    "break_end",
    "max_concurrent",
    "consultation_type",
    "location",
    "notes",
    "is_active",
)


async def templates_for_day(scope: TenantScope, doctor_id: UUID, day: date) -> List[AvailabilityTemplate]:
    """Active templates that govern ``day`` for a doctor, earliest first.

    Date overrides for the day replace the recurring weekday templates
    entirely; recurring ones only apply when no override exists.
    """
    stmt = scope.select(
        AvailabilityTemplate,
        AvailabilityTemplate.doctor_id == doctor_id,
        AvailabilityTemplate.is_active == True,  # noqa: E712
        or_(
            and_(AvailabilityTemplate.is_recurring == False, AvailabilityTemplate.specific_date == day),  # noqa: E712
            and_(AvailabilityTemplate.is_recurring == True, AvailabilityTemplate.day_of_week == Weekday.of(day)),  # noqa: E712
        ),
    ).order_by(AvailabilityTemplate.start_time)
    result = await scope.session.execute(stmt)
    templates = result.scalars().all()

    overrides = [t for t in templates if not t.is_recurring]
    return overrides or [t for t in templates if t.is_recurring]


def _rule_criteria(rule: TemplateRule):
    if isinstance(rule, Recurring):
        return and_(AvailabilityTemplate.is_recurring == True, AvailabilityTemplate.day_of_week == rule.weekday)  # noqa: E712
    return and_(AvailabilityTemplate.is_recurring == False, AvailabilityTemplate.specific_date == rule.on)  # noqa: E712


def _windows_clash(a: AvailabilityTemplate, b: AvailabilityTemplate) -> bool:
    if a.rule != b.rule:
        return False
    anchor = date.min
    return intervals_overlap(
        datetime.combine(anchor, a.start_time),
        datetime.combine(anchor, a.end_time),
        datetime.combine(anchor, b.start_time),
        datetime.combine(anchor, b.end_time),
    )


class AvailabilityService:
    def __init__(self, scope: TenantScope):
        self.scope = scope
        self.session = scope.session

    async def get_template(self, template_id: UUID) -> AvailabilityTemplate:
        return await self.scope.get_or_404(AvailabilityTemplate, template_id, "Time slot not found")

    async def list_templates(
        self,
        doctor_id: Optional[UUID] = None,
        day_of_week: Optional[Weekday] = None,
        on_date: Optional[date] = None,
        include_inactive: bool = False,
    ) -> List[AvailabilityTemplate]:
        criteria = []
        if doctor_id:
            criteria.append(AvailabilityTemplate.doctor_id == doctor_id)
        if day_of_week:
            criteria.append(AvailabilityTemplate.day_of_week == day_of_week)
        if on_date:
            criteria.append(or_(
                AvailabilityTemplate.specific_date == on_date,
                and_(AvailabilityTemplate.is_recurring == True, AvailabilityTemplate.day_of_week == Weekday.of(on_date)),  # noqa: E712
            ))
        if not include_inactive:
            criteria.append(AvailabilityTemplate.is_active == True)  # noqa: E712

        stmt = self.scope.select(AvailabilityTemplate, *criteria).order_by(
            AvailabilityTemplate.doctor_id,
            AvailabilityTemplate.day_of_week,
            AvailabilityTemplate.specific_date,
            AvailabilityTemplate.start_time,
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def create_templates(
        self, doctor_id: UUID, items: Iterable[dict], actor_id: Optional[UUID] = None
    ) -> List[AvailabilityTemplate]:
        """Create one or more templates for a doctor, all or nothing.

        Each item holds a ``rule`` (Recurring or DateOverride) plus the
        window fields.
        """
        await self.scope.get_or_404(Doctor, doctor_id, "Doctor not found")

        created: List[AvailabilityTemplate] = []
        for item in items:
            data = dict(item)
            rule = data.pop("rule")
            template = AvailabilityTemplate(doctor_id=doctor_id, **data)
            template.apply_rule(rule)
            self._validate(template)
            await self._ensure_no_clash(template, pending=created)
            created.append(template)

        if not created:
            raise ValidationError("At least one time slot is required")

        for template in created:
            self.scope.add(template)
            self._audit(actor_id, "template.created", template)
        await self.session.commit()

        logger.info(f"Created {len(created)} availability template(s) for doctor {doctor_id}")
        return created

    async def update_template(
        self, template: AvailabilityTemplate, changes: dict, actor_id: Optional[UUID] = None
    ) -> AvailabilityTemplate:
        unknown = set(changes) - set(TEMPLATE_FIELDS) - {"rule"}
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        try:
            for key, value in changes.items():
                if key == "rule":
                    template.apply_rule(value)
                else:
                    setattr(template, key, value)
            self._validate(template)
            if template.is_active:
                await self._ensure_no_clash(template)
        except ValidationError:
            await self.session.rollback()
            raise

        template.updated_at = utcnow()
        self._audit(actor_id, "template.updated", template)
        await self.session.commit()
        logger.info(f"Updated availability template {template.id}")
        return template

    async def deactivate_template(
        self, template: AvailabilityTemplate, actor_id: Optional[UUID] = None
    ) -> AvailabilityTemplate:
        # Slots are derived, so appointments already booked from this template stay valid
        template.is_active = False
        template.updated_at = utcnow()
        self._audit(actor_id, "template.deactivated", template)
        await self.session.commit()
        logger.info(f"Deactivated availability template {template.id}")
        return template

    def _validate(self, template: AvailabilityTemplate) -> None:
        if template.is_recurring and template.day_of_week is None:
            raise ValidationError("Recurring time slots need a day of week")
        if not template.is_recurring and template.specific_date is None:
            raise ValidationError("Date-specific time slots need a date")
        check_window(
            template.start_time,
            template.end_time,
            template.slot_duration_minutes,
            template.break_start,
            template.break_end,
            template.max_concurrent,
        )

    async def _ensure_no_clash(
        self, template: AvailabilityTemplate, pending: Iterable[AvailabilityTemplate] = ()
    ) -> None:
        stmt = self.scope.select(
            AvailabilityTemplate,
            AvailabilityTemplate.doctor_id == template.doctor_id,
            AvailabilityTemplate.is_active == True,  # noqa: E712
            AvailabilityTemplate.id != template.id,
            _rule_criteria(template.rule),
        )
        result = await self.session.execute(stmt)
        existing = list(result.scalars().all()) + list(pending)
        if any(_windows_clash(template, other) for other in existing):
            raise ValidationError("Time slot overlaps with existing slot")

    def _audit(self, actor_id: Optional[UUID], action: str, template: AvailabilityTemplate) -> None:
        rule = template.rule
        self.scope.add(AuditLog(
            actor_id=actor_id,
            action=action,
            entity_id=template.id,
            payload={
                "doctor_id": str(template.doctor_id),
                "rule": rule.weekday.value if isinstance(rule, Recurring) else rule.on.isoformat(),
                "start_time": template.start_time.strftime("%H:%M"),
                "end_time": template.end_time.strftime("%H:%M"),
                "is_active": template.is_active,
            },
        ))
