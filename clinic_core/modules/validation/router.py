from typing import Any, Callable
from fastapi import APIRouter, Body, Depends
from clinic_core.core.errors import AuthorizationError, NotFoundError
from clinic_core.core.security import Principal, require_any_permission
from clinic_core.modules.access.isolation import ensure_access
from clinic_core.modules.access.permissions import CrudResource, Permission, can_perform
from clinic_core.modules.validation import business_rules
from clinic_core.modules.validation.engine import (
    ValidationResult, validate_clinic, validate_inventory_item, validate_invoice, validate_patient,
    validate_product, validate_request,
)

router = APIRouter()

Validator = Callable[[dict[str, Any]], ValidationResult]

# structural check, business rules (run only for structurally valid records), guarded resource
_VALIDATORS: dict[str, tuple[Validator, Validator | None, CrudResource | None]] = {
    "invoices": (validate_invoice, business_rules.validate_invoice_rules, "invoice"),
    "patients": (validate_patient, business_rules.validate_patient_rules, "patient"),
    "requests": (validate_request, business_rules.validate_request_rules, "request"),
    "products": (validate_product, None, None),
    "inventory": (validate_inventory_item, None, None),
    "clinics": (validate_clinic, None, None),
}

_WRITE_PERMISSIONS = tuple(
    Permission(f"{op}_{res}") for res in ("patient", "invoice", "request") for op in ("create", "update")
)

@router.post("/{kind}", response_model=ValidationResult)
async def validate_record(
    kind: str,
    record: dict[str, Any] = Body(...),
    principal: Principal = Depends(require_any_permission(*_WRITE_PERMISSIONS)),
):
    """Structural problems come back as ``valid=false``; rule violations raise BusinessRuleError (422)."""
    if kind not in _VALIDATORS:
        raise NotFoundError(f"No validator for {kind}")
    structural, rules, resource = _VALIDATORS[kind]
    if resource is not None and not any(can_perform(principal.permissions, resource, op) for op in ("create", "update")):
        raise AuthorizationError(f"Insufficient permissions to write {resource} records")
    if kind != "clinics" and record.get("clinic_id"):
        ensure_access(principal, str(record["clinic_id"]))
    result = structural(record)
    if result.valid and rules is not None:
        business_rules.ensure_valid(rules(record))
    return result
