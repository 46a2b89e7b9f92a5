from sqlmodel import SQLModel, Field
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from .mixins import timestamp_field

class TenantStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"

class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    status: TenantStatus = Field(default=TenantStatus.ACTIVE)
    created_at: datetime = timestamp_field()
