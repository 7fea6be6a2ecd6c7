import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON
from clinic_core.core.base import Base, TimestampedMixin

class Clinic(Base, TimestampedMixin):
    name: Mapped[str] = mapped_column(String(100))
    cnpj: Mapped[str] = mapped_column(String(18), index=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    phone: Mapped[str] = mapped_column(String(20))
    address: Mapped[str] = mapped_column(String(300))
    city: Mapped[str] = mapped_column(String(100))
    admin_user_id: Mapped[uuid.UUID] = mapped_column()
    status: Mapped[str] = mapped_column(String(16), default="active")  # active | inactive
    # pending | provisioned | provisioning_failed (bootstrap admin login account)
    provisioning_status: Mapped[str] = mapped_column(String(24), default="pending")
    provisioning_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    settings: Mapped[dict] = mapped_column(JSON)  # {"timezone": ..., "notification_preferences": {...}}

    def to_record(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "cnpj": self.cnpj,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "admin_user_id": str(self.admin_user_id),
            "status": self.status,
            "settings": self.settings,
        }
