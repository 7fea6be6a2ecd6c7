import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, JSON
from clinic_core.core.base import Base, utcnow

class AuditEntry(Base):
    """Append-only audit record. Nothing in the codebase updates or deletes rows."""
    __tablename__ = "audit_entry"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # who / tenant scope (None == system-level event)
    user_id: Mapped[str] = mapped_column(String(64))
    clinic_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    # what happened
    action_type: Mapped[str] = mapped_column(String(48), index=True)   # clinic_created | clinic_updated | ...
    resource_type: Mapped[str] = mapped_column(String(48), index=True) # clinic | user | authentication | ...
    resource_id: Mapped[str] = mapped_column(String(64), index=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    severity: Mapped[str] = mapped_column(String(8), default="info")   # info | warning | error
    status: Mapped[str] = mapped_column(String(8), default="success")  # success | error
    # origin
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow, index=True)
