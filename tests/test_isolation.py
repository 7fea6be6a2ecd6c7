import uuid

import pytest

from clinic_core.core.errors import AuthorizationError
from clinic_core.modules.access.isolation import can_access, ensure_access
from clinic_core.modules.access.permissions import Role
from tests.helpers import clinic_actor


def test_system_level_actor_reaches_every_clinic(system_admin):
    assert can_access(None, uuid.uuid4())
    ensure_access(system_admin, uuid.uuid4())


def test_clinic_actor_only_reaches_own_clinic():
    own, other = uuid.uuid4(), uuid.uuid4()
    assert can_access(own, own)
    assert can_access(own, str(own))
    assert not can_access(own, other)


@pytest.mark.parametrize("role", [Role.CLINIC_ADMIN, Role.CLINIC_USER])
def test_ensure_access_denies_other_clinics(role):
    actor = clinic_actor(uuid.uuid4(), role)
    with pytest.raises(AuthorizationError) as exc:
        ensure_access(actor, uuid.uuid4())
    assert exc.value.status_code == 403
