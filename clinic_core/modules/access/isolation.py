"""Clinic isolation guard: the single gate in front of clinic-scoped data."""
import uuid
from typing import TYPE_CHECKING

from clinic_core.core.errors import AuthorizationError

if TYPE_CHECKING:
    from clinic_core.core.security import Principal


def can_access(actor_clinic_id: uuid.UUID | str | None, resource_clinic_id: uuid.UUID | str) -> bool:
    # no clinic binding == system level
    if actor_clinic_id is None:
        return True
    return str(actor_clinic_id) == str(resource_clinic_id)


def ensure_access(principal: "Principal", resource_clinic_id: uuid.UUID | str) -> None:
    if not can_access(principal.clinic_id, resource_clinic_id):
        raise AuthorizationError("Access denied to this clinic")
