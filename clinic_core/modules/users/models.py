import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON, TIMESTAMP, ForeignKey
from clinic_core.core.base import Base, TimestampedMixin

class User(Base, TimestampedMixin):
    email: Mapped[str] = mapped_column(String(255), index=True)
    role: Mapped[str] = mapped_column(String(16))  # system_admin | clinic_admin | clinic_user
    clinic_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("clinic.id"), nullable=True, index=True)
    permissions: Mapped[list] = mapped_column(JSON, default=list)
    first_name: Mapped[str] = mapped_column(String(50))
    last_name: Mapped[str] = mapped_column(String(50))
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    def to_record(self) -> dict:
        return {
            "id": str(self.id),
            "email": self.email,
            "role": self.role,
            "clinic_id": str(self.clinic_id) if self.clinic_id else None,
            "permissions": list(self.permissions or []),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
        }
