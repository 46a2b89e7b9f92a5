"""Role checks for every scheduling mutation and read.

Services call ``authorize`` before touching state; nothing else in the
codebase compares roles.
"""
from dataclasses import replace
from enum import Enum
from typing import Optional
from uuid import UUID

from medislot.core.exceptions import AuthorizationError
from medislot.core.tenancy import Actor
from medislot.db.models import Appointment


class Action(str, Enum):
    VIEW_SLOTS = "view_slots"
    VIEW_TEMPLATES = "view_templates"
    MANAGE_TEMPLATE = "manage_template"
    BOOK = "book"
    VIEW_APPOINTMENT = "view_appointment"
    UPDATE_APPOINTMENT = "update_appointment"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    START = "start"
    NO_SHOW = "no_show"
    COMPLETE = "complete"
    DELETE = "delete"


# Transitions the assigned doctor or an admin may drive
_CLINICAL_ACTIONS = {Action.CONFIRM, Action.START, Action.NO_SHOW}
# Reads and edits open to admins and both parties of the appointment
_PARTICIPANT_ACTIONS = {Action.VIEW_APPOINTMENT, Action.UPDATE_APPOINTMENT, Action.CANCEL}


def _is_assigned_doctor(actor: Actor, appointment: Appointment) -> bool:
    return actor.is_doctor and actor.doctor_id is not None and appointment.doctor_id == actor.doctor_id


def _is_own_patient(actor: Actor, appointment: Appointment) -> bool:
    return actor.is_patient and actor.patient_id is not None and appointment.patient_id == actor.patient_id


def authorize(
    actor: Actor,
    action: Action,
    *,
    appointment: Optional[Appointment] = None,
    patient_id: Optional[UUID] = None,
    doctor_id: Optional[UUID] = None,
) -> None:
    """Raise AuthorizationError unless ``actor`` may perform ``action``."""
    if action in (Action.VIEW_SLOTS, Action.VIEW_TEMPLATES):
        return

    if action == Action.BOOK:
        if actor.is_patient and (actor.patient_id is None or patient_id != actor.patient_id):
            raise AuthorizationError("Patients can only book appointments for themselves")
        return

    if action == Action.MANAGE_TEMPLATE:
        if actor.is_admin:
            return
        if actor.is_doctor and actor.doctor_id is not None and doctor_id == actor.doctor_id:
            return
        raise AuthorizationError("Not authorized to modify this time slot")

    if action == Action.DELETE:
        if not actor.is_admin:
            raise AuthorizationError("Only admins can delete appointments")
        return

    if appointment is None:
        raise ValueError(f"{action.value} needs the appointment being acted on")

    if action == Action.COMPLETE:
        if not _is_assigned_doctor(actor, appointment):
            raise AuthorizationError("Only the assigned doctor can complete this appointment")
        return

    if action in _CLINICAL_ACTIONS:
        if actor.is_admin or _is_assigned_doctor(actor, appointment):
            return
        raise AuthorizationError(f"Not authorized to {action.value.replace('_', ' ')} this appointment")

    if action in _PARTICIPANT_ACTIONS:
        if actor.is_admin or _is_assigned_doctor(actor, appointment) or _is_own_patient(actor, appointment):
            return
        raise AuthorizationError("Not authorized to access this appointment")

    raise AuthorizationError("Not enough permissions")


def restrict_listing(actor: Actor, filters):
    """Force non-admin listings onto the caller's own appointments.

    ``filters`` is any dataclass with ``doctor_id`` and ``patient_id``;
    client-supplied values for those fields are overwritten, never trusted.
    """
    if actor.is_admin:
        return filters
    if actor.is_doctor:
        if actor.doctor_id is None:
            raise AuthorizationError("No doctor profile is linked to this account")
        return replace(filters, doctor_id=actor.doctor_id)
    if actor.is_patient:
        if actor.patient_id is None:
            raise AuthorizationError("No patient profile is linked to this account")
        return replace(filters, patient_id=actor.patient_id)
    raise AuthorizationError("Not enough permissions")


def restrict_template_listing(actor: Actor, doctor_id: Optional[UUID]) -> Optional[UUID]:
    if actor.is_doctor:
        if actor.doctor_id is None:
            raise AuthorizationError("No doctor profile is linked to this account")
        return actor.doctor_id
    return doctor_id
