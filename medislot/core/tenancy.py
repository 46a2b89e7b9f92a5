from dataclasses import dataclass
from typing import Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from sqlmodel.sql.expression import SelectOfScalar

from medislot.core.exceptions import NotFoundError, TenantIsolationError
from medislot.db.models import TenantOwned, UserRole

ModelT = TypeVar("ModelT", bound=TenantOwned)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, already resolved inside its tenant."""
    user_id: UUID
    tenant_id: UUID
    role: UserRole
    doctor_id: Optional[UUID] = None
    patient_id: Optional[UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_doctor(self) -> bool:
        return self.role == UserRole.DOCTOR

    @property
    def is_patient(self) -> bool:
        return self.role == UserRole.PATIENT


class TenantScope:
    """Tenant-bound access to the session.

    Services build every query through this object so the tenant filter
    cannot be forgotten or switched off.
    """

    def __init__(self, session: AsyncSession, tenant_id: UUID):
        if tenant_id is None:
            raise TenantIsolationError("A tenant is required for every scoped operation")
        self.session = session
        self.tenant_id = tenant_id

    @classmethod
    def for_actor(cls, session: AsyncSession, actor: Actor) -> "TenantScope":
        return cls(session, actor.tenant_id)

    def _check_model(self, model: type) -> None:
        if not (isinstance(model, type) and issubclass(model, TenantOwned)):
            raise TenantIsolationError(f"{model!r} is not tenant-owned and cannot be queried through a tenant scope")

    def select(self, model: Type[ModelT], *criteria) -> SelectOfScalar[ModelT]:
        self._check_model(model)
        return select(model).where(model.tenant_id == self.tenant_id, *criteria)

    def count(self, model: Type[ModelT], *criteria):
        self._check_model(model)
        return select(func.count()).select_from(model).where(model.tenant_id == self.tenant_id, *criteria)

    async def get(self, model: Type[ModelT], obj_id: UUID) -> Optional[ModelT]:
        result = await self.session.execute(self.select(model, model.id == obj_id))
        return result.scalars().first()

    async def get_or_404(self, model: Type[ModelT], obj_id: UUID, detail: Optional[str] = None) -> ModelT:
        obj = await self.get(model, obj_id)
        if obj is None:
            raise NotFoundError(detail or f"{model.__name__} not found")
        return obj

    def add(self, obj: TenantOwned) -> None:
        self._check_model(type(obj))
        if obj.tenant_id is None:
            obj.tenant_id = self.tenant_id
        elif obj.tenant_id != self.tenant_id:
            raise TenantIsolationError(
                f"Refusing to write {type(obj).__name__} for tenant {obj.tenant_id} inside tenant {self.tenant_id}"
            )
        self.session.add(obj)
