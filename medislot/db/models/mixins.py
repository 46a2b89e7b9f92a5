from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime
from uuid import UUID

from medislot.core.utils import utcnow

class TenantOwned(SQLModel):
    """Columns shared by every row that lives inside a tenant.

    TenantScope only accepts models deriving from this class.
    """
    tenant_id: UUID = Field(foreign_key="tenants.id", index=True)

def timestamp_field(nullable: bool = False):
    """Timezone-aware UTC column; required ones default to now."""
    if nullable:
        return Field(default=None, sa_type=DateTime(timezone=True))
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
