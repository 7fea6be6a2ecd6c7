import uuid
from datetime import datetime
from typing import Any
from pydantic import BaseModel, ConfigDict, Field

class AuditLogFilters(BaseModel):
    clinic_id: uuid.UUID | None = None
    user_id: str | None = None
    action_type: str | None = None
    resource_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)

class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    clinic_id: str | None
    action_type: str
    resource_type: str
    resource_id: str
    details: dict[str, Any]
    severity: str
    status: str
    ip_address: str | None
    user_agent: str | None
    request_id: str | None
    timestamp: datetime

class Pagination(BaseModel):
    offset: int
    limit: int
    total: int
    has_more: bool

class AuditLogPage(BaseModel):
    logs: list[AuditEntryOut]
    pagination: Pagination
