import uuid

import pytest
from sqlalchemy import select

from clinic_core.core.errors import AuthorizationError, ConflictError, NotFoundError, ProvisioningError, ValidationError
from clinic_core.core.security import Principal
from clinic_core.modules.access.permissions import Role, default_permissions
from clinic_core.modules.audit.models import AuditEntry
from clinic_core.modules.clinics.schemas import ClinicCreate
from clinic_core.modules.clinics.service import ClinicService
from clinic_core.modules.users.schemas import UserCreate, UserUpdate
from clinic_core.modules.users.service import ActorService
from clinic_core.platform.ports.identity_accounts import IdentityAccountError
from tests.helpers import clinic_actor, clinic_payload


@pytest.fixture
async def clinic(session, audit, identity, system_admin):
    return await ClinicService(session, audit, identity).create(ClinicCreate(**clinic_payload()), system_admin)


@pytest.fixture
def service(session, audit, identity):
    return ActorService(session, audit, identity)


def _user(**overrides) -> UserCreate:
    data = {"email": "nurse@clinic.com", "password": "long-enough", "role": "clinic_user",
            "profile": {"first_name": "Bia", "last_name": "Lima"}}
    data.update(overrides)
    return UserCreate(**data)


async def test_system_admin_creates_clinic_user(service, clinic, system_admin, identity):
    user = await service.create_user(_user(clinic_id=clinic.id, permissions=["read_patient"]), system_admin)
    assert user.clinic_id == clinic.id
    assert user.permissions == ["read_patient"]
    assert identity.accounts[str(user.id)]["claims"]["clinic_id"] == str(clinic.id)


async def test_clinic_user_requires_clinic(service, system_admin):
    with pytest.raises(ValidationError) as exc:
        await service.create_user(_user(), system_admin)
    assert "Clinic users must have clinic_id" in exc.value.details


async def test_clinic_admin_is_confined_to_own_clinic(service, clinic):
    admin = clinic_actor(clinic.id)
    with pytest.raises(AuthorizationError):
        await service.create_user(_user(clinic_id=uuid.uuid4()), admin)
    with pytest.raises(AuthorizationError):
        await service.create_user(_user(role="system_admin"), admin)


async def test_invalid_payload_collects_errors(service, clinic):
    with pytest.raises(ValidationError) as exc:
        await service.create_user(_user(email="nope", password="short", permissions=["manage_users"]),
                                  clinic_actor(clinic.id))
    assert "Invalid email format" in exc.value.details
    assert "Password must be at least 8 characters" in exc.value.details
    assert any("manage_users" in e for e in exc.value.details)
    with pytest.raises(ValidationError):
        await service.create_user(_user(role="overlord"), clinic_actor(clinic.id))


async def test_duplicate_email_and_missing_clinic(service, clinic, system_admin):
    with pytest.raises(ConflictError):
        await service.create_user(_user(email="admin@belavista.com.br", clinic_id=clinic.id), system_admin)
    with pytest.raises(NotFoundError):
        await service.create_user(_user(clinic_id=uuid.uuid4()), system_admin)


async def test_failed_login_account_rolls_back_user(session, audit, identity, clinic):
    async def refuse(*args, **kwargs):
        raise IdentityAccountError("quota exceeded")

    identity.create_account = refuse
    service = ActorService(session, audit, identity)
    admin = clinic_actor(clinic.id)
    with pytest.raises(ProvisioningError):
        await service.create_user(_user(), admin)
    assert [u.email for u in await service.list_for_clinic(clinic.id, admin)] == ["admin@belavista.com.br"]


async def test_get_user_isolation(service, clinic, system_admin):
    user = await service.create_user(_user(clinic_id=clinic.id), system_admin)
    assert (await service.get_user(user.id, clinic_actor(clinic.id, Role.CLINIC_USER))).id == user.id
    with pytest.raises(AuthorizationError):
        await service.get_user(user.id, clinic_actor(uuid.uuid4()))
    with pytest.raises(NotFoundError):
        await service.get_user(uuid.uuid4(), system_admin)


async def _entries(session_factory, action_type):
    async with session_factory() as s:
        return (await s.execute(select(AuditEntry).where(AuditEntry.action_type == action_type))).scalars().all()


async def test_role_change_resets_permissions_and_claims(service, clinic, system_admin, identity, audit, session_factory):
    user = await service.create_user(_user(clinic_id=clinic.id), system_admin)
    updated = await service.update_user(user.id, UserUpdate(role="clinic_admin"), clinic_actor(clinic.id))
    await audit.drain()

    assert updated.role == "clinic_admin"
    assert "manage_users" in updated.permissions
    claims = identity.accounts[str(user.id)]["claims"]
    assert claims["role"] == "clinic_admin"
    assert claims["permissions"] == updated.permissions
    [entry] = await _entries(session_factory, "user_updated")
    assert entry.clinic_id == str(clinic.id)
    assert entry.details["clinic_id"] == str(clinic.id)
    assert entry.details["changes"]["role"] == {"from": "clinic_user", "to": "clinic_admin"}


async def test_update_user_authorization(service, clinic, system_admin):
    user = await service.create_user(_user(clinic_id=clinic.id), system_admin)
    with pytest.raises(AuthorizationError):
        await service.update_user(user.id, UserUpdate(role="clinic_admin"), clinic_actor(uuid.uuid4()))
    with pytest.raises(AuthorizationError):
        await service.update_user(user.id, UserUpdate(role="clinic_admin"), clinic_actor(clinic.id, Role.CLINIC_USER))
    with pytest.raises(AuthorizationError):
        await service.update_user(user.id, UserUpdate(role="system_admin"), clinic_actor(clinic.id))
    with pytest.raises(ValidationError) as exc:
        await service.update_user(user.id, UserUpdate(permissions=["manage_users"]), clinic_actor(clinic.id))
    assert any("manage_users" in e for e in exc.value.details)
    with pytest.raises(ValidationError):
        await service.update_user(user.id, UserUpdate(role="system_admin"), system_admin)
    with pytest.raises(NotFoundError):
        await service.update_user(uuid.uuid4(), UserUpdate(role="clinic_user"), system_admin)


async def test_actor_cannot_change_own_role(service, clinic, system_admin):
    user = await service.create_user(_user(clinic_id=clinic.id, role="clinic_admin"), system_admin)
    me = Principal(user_id=user.id, role=Role.CLINIC_ADMIN, clinic_id=clinic.id,
                   permissions=default_permissions(Role.CLINIC_ADMIN))
    with pytest.raises(AuthorizationError):
        await service.update_user(user.id, UserUpdate(role="clinic_user"), me)
    renamed = await service.update_user(user.id, UserUpdate(profile={"first_name": "Beatriz"}), me)
    assert renamed.first_name == "Beatriz"
    assert renamed.last_name == "Lima"


async def test_profile_update_leaves_claims_alone(session, audit, identity, clinic, system_admin, session_factory):
    service = ActorService(session, audit, identity)
    user = await service.create_user(_user(clinic_id=clinic.id), system_admin)

    async def refuse(*args, **kwargs):
        raise IdentityAccountError("backend down")

    identity.set_claims = refuse
    updated = await service.update_user(user.id, UserUpdate(profile={"phone": "(11) 98765-0000"}), system_admin)
    assert updated.phone == "(11) 98765-0000"

    with pytest.raises(ProvisioningError):
        await service.update_user(user.id, UserUpdate(permissions=["read_patient"]), system_admin)
    # the row change is kept and audited even when the claims refresh fails
    assert (await service.get_user(user.id, system_admin)).permissions == ["read_patient"]
    await audit.drain()
    assert len(await _entries(session_factory, "user_updated")) == 2


async def test_unchanged_update_is_not_audited(service, clinic, system_admin, audit, session_factory):
    user = await service.create_user(_user(clinic_id=clinic.id), system_admin)
    await service.update_user(user.id, UserUpdate(role="clinic_user"), system_admin)
    await audit.drain()
    assert await _entries(session_factory, "user_updated") == []


async def test_delete_user(service, clinic, system_admin, identity, audit, session_factory):
    user = await service.create_user(_user(clinic_id=clinic.id), system_admin)
    admin = clinic_actor(clinic.id)
    await service.delete_user(user.id, admin)
    await audit.drain()

    assert str(user.id) not in identity.accounts
    assert [u.email for u in await service.list_for_clinic(clinic.id, admin)] == ["admin@belavista.com.br"]
    [entry] = await _entries(session_factory, "user_deleted")
    assert entry.severity == "warning"
    assert entry.resource_id == str(user.id)
    assert entry.details == {"clinic_id": str(clinic.id), "email": "nurse@clinic.com", "role": "clinic_user"}


async def test_delete_user_guards(service, clinic, system_admin):
    user = await service.create_user(_user(clinic_id=clinic.id, role="clinic_admin"), system_admin)
    me = Principal(user_id=user.id, role=Role.CLINIC_ADMIN, clinic_id=clinic.id,
                   permissions=default_permissions(Role.CLINIC_ADMIN))
    with pytest.raises(AuthorizationError):
        await service.delete_user(user.id, me)
    with pytest.raises(AuthorizationError):
        await service.delete_user(user.id, clinic_actor(uuid.uuid4()))
    with pytest.raises(AuthorizationError):
        await service.delete_user(user.id, clinic_actor(clinic.id, Role.CLINIC_USER))
    with pytest.raises(ValidationError):
        await service.delete_user(clinic.admin_user_id, system_admin)
    with pytest.raises(NotFoundError):
        await service.delete_user(uuid.uuid4(), system_admin)


async def test_delete_survives_missing_login_account(service, clinic, system_admin, identity):
    user = await service.create_user(_user(clinic_id=clinic.id), system_admin)
    del identity.accounts[str(user.id)]
    await service.delete_user(user.id, system_admin)
    with pytest.raises(NotFoundError):
        await service.get_user(user.id, system_admin)
