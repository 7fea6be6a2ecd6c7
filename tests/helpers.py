import uuid

from clinic_core.core.security import Principal
from clinic_core.modules.access.permissions import Role, default_permissions

# 11.222.333/0001-81 is a well-known valid test CNPJ
VALID_CNPJ = "11.222.333/0001-81"
OTHER_VALID_CNPJ = "11444777000161"


def clinic_actor(clinic_id, role=Role.CLINIC_ADMIN) -> Principal:
    return Principal(user_id=uuid.uuid4(), role=role, clinic_id=clinic_id,
                     permissions=default_permissions(role))


def clinic_payload(**overrides) -> dict:
    data = {
        "name": "Clinica Bela Vista",
        "cnpj": VALID_CNPJ,
        "email": "contato@belavista.com.br",
        "phone": "(11) 98765-4321",
        "address": "Rua das Flores, 100",
        "city": "Sao Paulo",
        "admin_email": "admin@belavista.com.br",
        "admin_profile": {"first_name": "Ana", "last_name": "Souza", "phone": "11987654321"},
        "admin_password": "s3cret-pass",
    }
    data.update(overrides)
    return data
