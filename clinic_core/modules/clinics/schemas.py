import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field

class NotificationPreferences(BaseModel):
    low_stock_alerts: bool = True
    expiration_alerts: bool = True
    email_notifications: bool = True
    alert_threshold_days: int = 30

class NotificationPreferencesPatch(BaseModel):
    low_stock_alerts: bool | None = None
    expiration_alerts: bool | None = None
    email_notifications: bool | None = None
    alert_threshold_days: int | None = None

class ClinicSettingsPatch(BaseModel):
    timezone: str | None = None
    notification_preferences: NotificationPreferencesPatch | None = None

class ClinicSettings(BaseModel):
    timezone: str
    notification_preferences: NotificationPreferences

class AdminProfile(BaseModel):
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None

# Field-level checks live in the validation engine so every violation is
# reported together; the schemas only shape the payload.
class ClinicCreate(BaseModel):
    name: str = ""
    cnpj: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    admin_email: str = ""
    admin_profile: AdminProfile = Field(default_factory=AdminProfile)
    admin_password: str = ""
    settings: ClinicSettingsPatch | None = None

class ClinicUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    settings: ClinicSettingsPatch | None = None
    # accepted only so it can be rejected: status changes go through the toggle
    status: str | None = None

class StatusChange(BaseModel):
    status: str

class ProvisioningRetry(BaseModel):
    admin_password: str

class ClinicFilters(BaseModel):
    status: Literal["active", "inactive", "all"] = "all"
    sort_by: Literal["name", "created_at", "city"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

class ClinicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    cnpj: str
    email: str
    phone: str
    address: str
    city: str
    admin_user_id: uuid.UUID
    status: str
    provisioning_status: str
    settings: ClinicSettings
    created_at: datetime
    updated_at: datetime
