from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from medislot.core.exceptions import AuthenticationError, AuthorizationError
from medislot.core.logger import logger
from medislot.core.security import decode_access_token
from medislot.core.tenancy import Actor, TenantScope
from medislot.db.models import Doctor, Patient, Tenant, TenantStatus, User, UserRole
from medislot.db.session import get_session
from medislot.services.events import AppointmentEventPublisher, get_event_publisher
from medislot.services.scheduling_service import SchedulingService

bearer_scheme = HTTPBearer(auto_error=False)

async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session)
) -> Actor:
    if credentials is None:
        raise AuthenticationError()

    payload = decode_access_token(credentials.credentials)

    tenant = await session.get(Tenant, payload["tenant_id"])
    if tenant is None or tenant.status != TenantStatus.ACTIVE:
        logger.warning(f"Rejected request for inactive or unknown tenant {payload['tenant_id']}")
        raise AuthorizationError("Tenant access denied or suspended")

    request.state.tenant_id = tenant.id
    scope = TenantScope(session, tenant.id)
    user = await scope.get(User, payload["sub"])
    if user is None or not user.is_active:
        raise AuthenticationError("Could not validate credentials")

    doctor_id = patient_id = None
    if user.role == UserRole.DOCTOR:
        result = await session.execute(scope.select(Doctor, Doctor.user_id == user.id))
        doctor = result.scalars().first()
        doctor_id = doctor.id if doctor else None
    elif user.role == UserRole.PATIENT:
        result = await session.execute(scope.select(Patient, Patient.user_id == user.id))
        patient = result.scalars().first()
        patient_id = patient.id if patient else None

    # End the read transaction so the booking lock is taken by the service, not here
    await session.commit()

    return Actor(
        user_id=user.id,
        tenant_id=tenant.id,
        role=user.role,
        doctor_id=doctor_id,
        patient_id=patient_id,
    )

async def get_scheduling_service(
    session: AsyncSession = Depends(get_session),
    publisher: AppointmentEventPublisher = Depends(get_event_publisher)
) -> SchedulingService:
    return SchedulingService(session, publisher)
