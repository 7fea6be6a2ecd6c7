import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class UserProfile(BaseModel):
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None

# Lenient on purpose: the validation engine reports every violation at once.
class UserCreate(BaseModel):
    email: str = ""
    password: str = ""
    role: str = ""
    clinic_id: uuid.UUID | None = None
    permissions: list[str] | None = None
    profile: UserProfile = Field(default_factory=UserProfile)

class UserProfileUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None

class UserUpdate(BaseModel):
    role: str | None = None
    permissions: list[str] | None = None
    profile: UserProfileUpdate | None = None

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    role: str
    clinic_id: uuid.UUID | None
    permissions: list[str]
    first_name: str
    last_name: str
    phone: str | None
    last_login: datetime | None
    created_at: datetime
