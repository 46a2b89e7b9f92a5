import json
from typing import Optional

from redis.exceptions import RedisError

from medislot.core.config import settings
from medislot.core.logger import logger
from medislot.core.redis import RedisClient, redis_client
from medislot.db.models import Appointment


def appointment_event(event: str, appointment: Appointment, actor_id=None) -> dict:
    return {
        "event": event,
        "tenant_id": str(appointment.tenant_id),
        "appointment_id": str(appointment.id),
        "appointment_number": appointment.appointment_number,
        "doctor_id": str(appointment.doctor_id),
        "patient_id": str(appointment.patient_id),
        "appointment_date": appointment.appointment_date.isoformat(),
        "appointment_time": appointment.appointment_time.strftime("%H:%M"),
        "duration_minutes": appointment.duration_minutes,
        "status": appointment.status.value,
        "actor_id": str(actor_id) if actor_id else None,
    }


class AppointmentEventPublisher:
    """Hands committed appointment changes to the notification dispatcher."""

    def __init__(self, client: RedisClient = redis_client, channel: Optional[str] = None):
        self.client = client
        self.channel = channel or settings.APPOINTMENT_EVENTS_CHANNEL

    async def publish(self, event: str, appointment: Appointment, actor_id=None) -> None:
        message = json.dumps(appointment_event(event, appointment, actor_id))
        try:
            await self.client.publish(self.channel, message)
        except RedisError as exc:
            # The appointment is already committed; a lost notification must not undo it
            logger.warning(f"Could not publish {event} for appointment {appointment.id}: {exc}")


event_publisher = AppointmentEventPublisher()


def get_event_publisher() -> AppointmentEventPublisher:
    return event_publisher
