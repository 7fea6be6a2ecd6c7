"""Role -> permission table and role-assignment matrix."""
from enum import Enum
from typing import Iterable, Literal

from clinic_core.core.errors import AuthorizationError


class Role(str, Enum):
    SYSTEM_ADMIN = "system_admin"   # no clinic binding, authorized across all clinics
    CLINIC_ADMIN = "clinic_admin"
    CLINIC_USER = "clinic_user"


class Permission(str, Enum):
    CREATE_PATIENT = "create_patient"
    READ_PATIENT = "read_patient"
    UPDATE_PATIENT = "update_patient"
    DELETE_PATIENT = "delete_patient"
    CREATE_INVOICE = "create_invoice"
    READ_INVOICE = "read_invoice"
    UPDATE_INVOICE = "update_invoice"
    DELETE_INVOICE = "delete_invoice"
    CREATE_REQUEST = "create_request"
    READ_REQUEST = "read_request"
    UPDATE_REQUEST = "update_request"
    DELETE_REQUEST = "delete_request"
    READ_INVENTORY = "read_inventory"
    READ_DASHBOARD = "read_dashboard"
    MANAGE_USERS = "manage_users"


CrudResource = Literal["patient", "invoice", "request"]
CrudOperation = Literal["create", "read", "update", "delete"]

_CRUD = frozenset(
    Permission(f"{op}_{res}")
    for res in ("patient", "invoice", "request")
    for op in ("create", "read", "update", "delete")
)
_READ_ONLY = frozenset({Permission.READ_INVENTORY, Permission.READ_DASHBOARD})

_ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.SYSTEM_ADMIN: frozenset(Permission),
    Role.CLINIC_ADMIN: _CRUD | _READ_ONLY | {Permission.MANAGE_USERS},
    Role.CLINIC_USER: _CRUD | _READ_ONLY,
}


def parse_role(value: str | Role) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise AuthorizationError(f"Unknown role: {value}") from None


def is_valid_permission(value: str) -> bool:
    return isinstance(value, str) and value in Permission._value2member_map_


def default_permissions(role: Role) -> frozenset[Permission]:
    match role:
        case Role.SYSTEM_ADMIN | Role.CLINIC_ADMIN | Role.CLINIC_USER:
            return _ROLE_PERMISSIONS[role]
    raise AuthorizationError(f"Unknown role: {role}")


def allowed_permissions(role: Role) -> frozenset[Permission]:
    return default_permissions(role)


def has_permission(actor_permissions: Iterable[Permission], required: Permission) -> bool:
    return required in set(actor_permissions)


def has_any_permission(actor_permissions: Iterable[Permission], required: Iterable[Permission]) -> bool:
    held = set(actor_permissions)
    return any(p in held for p in required)


def has_all_permissions(actor_permissions: Iterable[Permission], required: Iterable[Permission]) -> bool:
    return set(required).issubset(set(actor_permissions))


def can_perform(actor_permissions: Iterable[Permission], resource: CrudResource, operation: CrudOperation) -> bool:
    return has_permission(actor_permissions, Permission(f"{operation}_{resource}"))


def can_assign_role(creator_role: Role, target_role: Role) -> bool:
    """Whether ``creator_role`` may hand out ``target_role``.

    Clinic admins are further limited to their own clinic; that half of the
    rule is the isolation guard's job and is checked by the caller.
    """
    match creator_role:
        case Role.SYSTEM_ADMIN:
            return True
        case Role.CLINIC_ADMIN:
            return target_role in (Role.CLINIC_ADMIN, Role.CLINIC_USER)
        case Role.CLINIC_USER:
            return False
    return False


def ensure_permission(actor_permissions: Iterable[Permission], required: Permission) -> None:
    if not has_permission(actor_permissions, required):
        raise AuthorizationError(f"Missing required permission: {required.value}")


def ensure_role(actor_role: Role, *allowed: Role, action: str = "perform this action") -> None:
    if actor_role not in allowed:
        raise AuthorizationError(f"Insufficient permissions to {action}")


def ensure_can_assign_role(creator_role: Role, target_role: Role) -> None:
    if not can_assign_role(creator_role, target_role):
        raise AuthorizationError(
            f"Role {creator_role.value} cannot assign role {target_role.value}"
        )


def validate_permission_set(role: Role, permissions: Iterable[str]) -> list[str]:
    """Return one error per unknown or over-privileged permission (empty when valid)."""
    errors: list[str] = []
    values = list(permissions)
    unknown = [p for p in values if not is_valid_permission(p)]
    if unknown:
        errors.append(f"Invalid permissions: {', '.join(str(p) for p in unknown)}")
    allowed = allowed_permissions(role)
    excess = [p for p in values if is_valid_permission(p) and Permission(p) not in allowed]
    if excess:
        errors.append(f"Permissions not allowed for role {role.value}: {', '.join(excess)}")
    return errors
