from sqlmodel import SQLModel
from .mixins import TenantOwned
from .tenant import Tenant, TenantStatus
from .user import User, UserRole
from .patient import Patient
from .doctor import Doctor
from .availability import (
    AvailabilityTemplate,
    DateOverride,
    Recurring,
    TemplateConsultationType,
    TemplateRule,
    Weekday,
)
from .appointment import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentStatus,
    ConsultationType,
    Priority,
)
from .audit_log import AuditLog

__all__ = [
    "SQLModel",
    "TenantOwned",
    "Tenant",
    "TenantStatus",
    "User",
    "UserRole",
    "Patient",
    "Doctor",
    "AvailabilityTemplate",
    "DateOverride",
    "Recurring",
    "TemplateConsultationType",
    "TemplateRule",
    "Weekday",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Appointment",
    "AppointmentStatus",
    "ConsultationType",
    "Priority",
    "AuditLog",
]
