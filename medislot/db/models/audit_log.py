from sqlmodel import Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4
from sqlalchemy import Column, JSON

from .mixins import TenantOwned, timestamp_field

class AuditLog(TenantOwned, table=True):
    __tablename__ = "audit_logs"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    actor_id: Optional[UUID] = None
    action: str = Field(index=True)
    entity_id: Optional[UUID] = None
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = timestamp_field()
