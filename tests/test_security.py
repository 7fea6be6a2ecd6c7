import uuid

import pytest
from fastapi import HTTPException
from pydantic import ValidationError as PydanticValidationError

from clinic_core.core.errors import ConflictError, RateLimitError
from clinic_core.core.ratelimit import RateLimitState
from clinic_core.core.security import Principal, principal_from_claims
from clinic_core.modules.access.permissions import Permission, Role


def test_claims_without_permissions_fall_back_to_role_defaults():
    clinic_id = uuid.uuid4()
    principal = principal_from_claims({"sub": str(uuid.uuid4()), "role": "clinic_user", "clinic_id": str(clinic_id)})
    assert principal.clinic_id == clinic_id
    assert Permission.READ_PATIENT in principal.permissions
    assert Permission.MANAGE_USERS not in principal.permissions
    assert not principal.is_system


def test_explicit_permissions_are_kept():
    principal = principal_from_claims({"sub": str(uuid.uuid4()), "role": "system_admin", "permissions": ["read_dashboard"]})
    assert principal.permissions == frozenset({Permission.READ_DASHBOARD})
    assert principal.is_system


@pytest.mark.parametrize("claims", [
    {"sub": str(uuid.uuid4()), "role": "wizard"},
    {"sub": str(uuid.uuid4()), "role": "clinic_admin"},
    {"sub": str(uuid.uuid4()), "role": "system_admin", "clinic_id": str(uuid.uuid4())},
    {"sub": str(uuid.uuid4()), "role": "clinic_user", "clinic_id": str(uuid.uuid4()), "permissions": ["fly"]},
    {"sub": str(uuid.uuid4()), "role": "clinic_user", "clinic_id": str(uuid.uuid4()), "permissions": ["manage_users"]},
    {"sub": str(uuid.uuid4()), "role": "clinic_user", "clinic_id": str(uuid.uuid4()), "permissions": "read_patient"},
])
def test_malformed_claims_are_unauthorized(claims):
    with pytest.raises(HTTPException) as exc:
        principal_from_claims(claims)
    assert exc.value.status_code == 401


def test_principal_enforces_clinic_binding():
    with pytest.raises(PydanticValidationError):
        Principal(user_id=uuid.uuid4(), role=Role.CLINIC_USER)


def test_principal_rejects_permissions_beyond_its_role():
    with pytest.raises(PydanticValidationError):
        Principal(user_id=uuid.uuid4(), role=Role.CLINIC_USER, clinic_id=uuid.uuid4(),
                  permissions=frozenset({Permission.READ_PATIENT, Permission.MANAGE_USERS}))


def test_token_may_narrow_role_permissions():
    principal = principal_from_claims({"sub": str(uuid.uuid4()), "role": "clinic_admin", "clinic_id": str(uuid.uuid4()),
                                       "permissions": ["read_patient"]})
    assert principal.permissions == frozenset({Permission.READ_PATIENT})


def test_error_rendering():
    assert ConflictError("dup", field="cnpj").to_dict() == {"code": "CONFLICT", "message": "dup", "details": {"field": "cnpj"}}
    assert RateLimitError().status_code == 429


def test_rate_limit_window_resets():
    now = [0.0]
    state = RateLimitState(max_requests=2, window_seconds=10, clock=lambda: now[0])
    assert [state.hit("1.2.3.4") for _ in range(3)] == [True, True, False]
    assert state.hit("5.6.7.8")
    now[0] = 10.0
    assert state.hit("1.2.3.4")
    now[0] = 25.0
    state.prune()
    assert state._windows == {}


def test_hit_sweeps_expired_windows():
    now = [0.0]
    state = RateLimitState(max_requests=5, window_seconds=10, clock=lambda: now[0])
    for i in range(50):
        state.hit(f"10.0.0.{i}")
    assert len(state._windows) == 50

    now[0] = 11.0
    assert state.hit("10.0.1.1")
    assert list(state._windows) == ["10.0.1.1"]


def test_sweep_keeps_live_windows():
    now = [0.0]
    state = RateLimitState(max_requests=1, window_seconds=10, clock=lambda: now[0])
    state.hit("old")
    now[0] = 5.0
    state.hit("recent")
    now[0] = 12.0
    state.hit("new")
    assert set(state._windows) == {"recent", "new"}
    assert not state.hit("recent")
