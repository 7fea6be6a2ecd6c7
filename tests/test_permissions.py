import pytest

from clinic_core.core.errors import AuthorizationError
from clinic_core.modules.access.permissions import (
    Permission, Role, allowed_permissions, can_assign_role, can_perform, default_permissions, ensure_can_assign_role,
    ensure_permission, ensure_role, has_all_permissions, has_any_permission, has_permission, parse_role,
    validate_permission_set,
)


def test_system_admin_has_every_permission():
    assert default_permissions(Role.SYSTEM_ADMIN) == frozenset(Permission)


def test_clinic_admin_can_manage_users_but_clinic_user_cannot():
    assert Permission.MANAGE_USERS in default_permissions(Role.CLINIC_ADMIN)
    assert Permission.MANAGE_USERS not in default_permissions(Role.CLINIC_USER)
    assert Permission.READ_DASHBOARD in default_permissions(Role.CLINIC_USER)


@pytest.mark.parametrize("creator,target,allowed", [
    (Role.SYSTEM_ADMIN, Role.SYSTEM_ADMIN, True),
    (Role.SYSTEM_ADMIN, Role.CLINIC_ADMIN, True),
    (Role.SYSTEM_ADMIN, Role.CLINIC_USER, True),
    (Role.CLINIC_ADMIN, Role.SYSTEM_ADMIN, False),
    (Role.CLINIC_ADMIN, Role.CLINIC_ADMIN, True),
    (Role.CLINIC_ADMIN, Role.CLINIC_USER, True),
    (Role.CLINIC_USER, Role.CLINIC_USER, False),
    (Role.CLINIC_USER, Role.CLINIC_ADMIN, False),
])
def test_role_assignment_matrix(creator, target, allowed):
    assert can_assign_role(creator, target) is allowed


def test_ensure_can_assign_role_raises():
    with pytest.raises(AuthorizationError):
        ensure_can_assign_role(Role.CLINIC_ADMIN, Role.SYSTEM_ADMIN)


def test_permission_checks():
    perms = {Permission.READ_PATIENT, Permission.CREATE_PATIENT}
    assert has_permission(perms, Permission.READ_PATIENT)
    assert not has_permission(perms, Permission.DELETE_PATIENT)
    assert has_any_permission(perms, [Permission.DELETE_PATIENT, Permission.READ_PATIENT])
    assert not has_all_permissions(perms, [Permission.DELETE_PATIENT, Permission.READ_PATIENT])
    assert can_perform(perms, "patient", "create")
    assert not can_perform(perms, "invoice", "read")
    with pytest.raises(AuthorizationError):
        ensure_permission(perms, Permission.MANAGE_USERS)


def test_ensure_role():
    ensure_role(Role.SYSTEM_ADMIN, Role.SYSTEM_ADMIN)
    with pytest.raises(AuthorizationError) as exc:
        ensure_role(Role.CLINIC_ADMIN, Role.SYSTEM_ADMIN, action="create clinics")
    assert "create clinics" in exc.value.message


def test_unknown_role_rejected():
    with pytest.raises(AuthorizationError):
        parse_role("superuser")
    assert parse_role("clinic_user") is Role.CLINIC_USER


def test_validate_permission_set():
    assert validate_permission_set(Role.CLINIC_USER, ["read_patient"]) == []
    errors = validate_permission_set(Role.CLINIC_USER, ["manage_users", "teleport"])
    assert len(errors) == 2
    assert allowed_permissions(Role.CLINIC_ADMIN) >= default_permissions(Role.CLINIC_ADMIN)
