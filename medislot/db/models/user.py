from sqlmodel import Field
from typing import Optional
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from .mixins import TenantOwned, timestamp_field

class UserRole(str, Enum):
    ADMIN = "Admin"
    DOCTOR = "Doctor"
    PATIENT = "Patient"

class User(TenantOwned, table=True):
    __tablename__ = "users"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    role: UserRole
    name: str
    email: Optional[str] = Field(default=None, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = timestamp_field()
