"""Structural field validators and record validators.

Field validators return ``bool``. Record validators return a
``ValidationResult`` holding every violation found, in field order, so the
caller can show a complete correction list at once.
"""
import re
from typing import Any, Iterable, Mapping

from pydantic import BaseModel

from clinic_core.core.errors import ValidationError
from clinic_core.modules.access.permissions import Role, validate_permission_set

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PRODUCT_CODE_RE = re.compile(r"^REN-[A-Z0-9]{6,10}$")
_NON_DIGITS = re.compile(r"\D")

CNPJ_WEIGHTS_1 = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
CNPJ_WEIGHTS_2 = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)

CLINIC_STATUSES = ("active", "inactive")
PRODUCT_STATUSES = ("approved", "pending")
INVOICE_STATUSES = ("pending", "approved", "rejected")
REQUEST_STATUSES = ("pending", "consumed", "cancelled")
UNIT_TYPES = ("ml", "units", "vials")


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = []

    @classmethod
    def from_errors(cls, errors: Iterable[str]) -> "ValidationResult":
        errors = list(errors)
        return cls(valid=not errors, errors=errors)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult.from_errors([*self.errors, *other.errors])

    def raise_for_errors(self, message: str = "Validation failed") -> None:
        if not self.valid:
            raise ValidationError(message, errors=self.errors)


def digits_only(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return _NON_DIGITS.sub("", value)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# -- field validators -------------------------------------------------------

def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and EMAIL_RE.match(email) is not None


def is_valid_phone(phone: str) -> bool:
    """Brazilian landline (10 digits) or mobile (11 digits, third digit 9)."""
    digits = digits_only(phone)
    if len(digits) in (12, 13) and digits.startswith("55"):
        digits = digits[2:]
    if len(digits) == 10:
        pass
    elif len(digits) == 11:
        if digits[2] != "9":
            return False
    else:
        return False
    return 11 <= int(digits[:2]) <= 99


def _cnpj_check_digit(digits: str, weights: tuple[int, ...]) -> int:
    total = sum(int(d) * w for d, w in zip(digits, weights))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cnpj(cnpj: str) -> bool:
    digits = digits_only(cnpj)
    if len(digits) != 14:
        return False
    if len(set(digits)) == 1:
        return False
    first = _cnpj_check_digit(digits[:12], CNPJ_WEIGHTS_1)
    second = _cnpj_check_digit(digits[:13], CNPJ_WEIGHTS_2)
    return int(digits[12]) == first and int(digits[13]) == second


def format_cnpj(cnpj: str) -> str:
    digits = digits_only(cnpj)
    if len(digits) != 14:
        return cnpj
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def is_valid_product_code(code: str) -> bool:
    return isinstance(code, str) and PRODUCT_CODE_RE.match(code) is not None


def is_valid_role(role: str) -> bool:
    return isinstance(role, str) and role in Role._value2member_map_


def is_valid_clinic_status(status: str) -> bool:
    return status in CLINIC_STATUSES


def is_valid_product_status(status: str) -> bool:
    return status in PRODUCT_STATUSES


def is_valid_invoice_status(status: str) -> bool:
    return status in INVOICE_STATUSES


def is_valid_request_status(status: str) -> bool:
    return status in REQUEST_STATUSES


def is_valid_unit_type(unit_type: str) -> bool:
    return unit_type in UNIT_TYPES


# -- record validators ------------------------------------------------------

def _check_required_text(errors: list[str], data: Mapping[str, Any], field: str, label: str) -> None:
    value = data.get(field)
    if _blank(value):
        errors.append(f"{label} is required")
    elif not isinstance(value, str):
        errors.append(f"{label} must be text")


def _check_email(errors: list[str], value: Any, label: str = "Email") -> None:
    if _blank(value):
        errors.append(f"{label} is required")
    elif not is_valid_email(value):
        errors.append(f"Invalid {label[0].lower() + label[1:]} format")


def _check_phone(errors: list[str], value: Any, label: str = "Phone") -> None:
    if _blank(value):
        errors.append(f"{label} is required")
    elif not is_valid_phone(value):
        errors.append("Invalid phone format")


def _check_cnpj(errors: list[str], value: Any) -> None:
    if _blank(value):
        errors.append("CNPJ is required")
    elif not is_valid_cnpj(value):
        errors.append("Invalid CNPJ format")


def _check_profile(errors: list[str], profile: Any) -> None:
    if not isinstance(profile, Mapping):
        errors.append("Profile is required")
        return
    _check_required_text(errors, profile, "first_name", "First name")
    _check_required_text(errors, profile, "last_name", "Last name")
    if not _blank(profile.get("phone")) and not is_valid_phone(profile["phone"]):
        errors.append("Invalid phone format")


def _check_settings(errors: list[str], settings: Any, *, partial: bool) -> None:
    if not isinstance(settings, Mapping):
        if not partial:
            errors.append("Settings are required")
        return
    if not partial and _blank(settings.get("timezone")):
        errors.append("Timezone is required in settings")
    prefs = settings.get("notification_preferences")
    if prefs is None:
        if not partial:
            errors.append("Notification preferences are required in settings")
        return
    days = prefs.get("alert_threshold_days") if isinstance(prefs, Mapping) else None
    if days is not None and (not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= 365):
        errors.append("Alert threshold days must be between 1 and 365")


def validate_clinic_creation(data: Mapping[str, Any], *, min_password_length: int = 8) -> ValidationResult:
    """Validate a create-clinic request: clinic fields plus the bootstrap admin."""
    errors: list[str] = []
    _check_required_text(errors, data, "name", "Clinic name")
    _check_cnpj(errors, data.get("cnpj"))
    _check_email(errors, data.get("email"), "Clinic email")
    _check_phone(errors, data.get("phone"), "Clinic phone")
    _check_required_text(errors, data, "address", "Clinic address")
    _check_required_text(errors, data, "city", "Clinic city")
    _check_email(errors, data.get("admin_email"), "Admin email")
    _check_profile(errors, data.get("admin_profile"))
    password = data.get("admin_password")
    if not isinstance(password, str):
        password = ""
    if len(password) < min_password_length:
        errors.append(f"Admin password must be at least {min_password_length} characters")
    if data.get("settings") is not None:
        _check_settings(errors, data["settings"], partial=True)
    return ValidationResult.from_errors(errors)


def validate_clinic(clinic: Mapping[str, Any]) -> ValidationResult:
    """Validate a complete clinic record."""
    errors: list[str] = []
    if _blank(clinic.get("id")):
        errors.append("Clinic ID is required")
    _check_required_text(errors, clinic, "name", "Clinic name")
    _check_cnpj(errors, clinic.get("cnpj"))
    _check_email(errors, clinic.get("email"), "Clinic email")
    _check_phone(errors, clinic.get("phone"), "Clinic phone")
    _check_required_text(errors, clinic, "address", "Clinic address")
    _check_required_text(errors, clinic, "city", "Clinic city")
    if _blank(clinic.get("admin_user_id")):
        errors.append("Admin user ID is required")
    status = clinic.get("status")
    if status is not None and not is_valid_clinic_status(status):
        errors.append('Invalid status. Must be "active" or "inactive"')
    _check_settings(errors, clinic.get("settings"), partial=False)
    return ValidationResult.from_errors(errors)


def validate_clinic_update(patch: Mapping[str, Any]) -> ValidationResult:
    """Validate only the fields present in a partial clinic update."""
    errors: list[str] = []
    if "name" in patch:
        _check_required_text(errors, patch, "name", "Clinic name")
    if "email" in patch:
        _check_email(errors, patch["email"], "Clinic email")
    if "phone" in patch:
        _check_phone(errors, patch["phone"], "Clinic phone")
    if "address" in patch:
        _check_required_text(errors, patch, "address", "Clinic address")
    if "city" in patch:
        _check_required_text(errors, patch, "city", "Clinic city")
    if "status" in patch and not is_valid_clinic_status(patch["status"]):
        errors.append('Invalid status. Must be "active" or "inactive"')
    if "settings" in patch:
        _check_settings(errors, patch["settings"], partial=True)
    return ValidationResult.from_errors(errors)


def validate_actor(user: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    _check_email(errors, user.get("email"))
    role = user.get("role")
    if _blank(role):
        errors.append("Role is required")
    elif not is_valid_role(role):
        errors.append("Invalid role")
    permissions = user.get("permissions")
    if not isinstance(permissions, (list, tuple, set, frozenset)):
        errors.append("Permissions array is required")
    elif role and is_valid_role(role):
        errors.extend(validate_permission_set(Role(role), permissions))
    _check_profile(errors, user.get("profile"))
    clinic_id = user.get("clinic_id")
    if role == Role.SYSTEM_ADMIN.value and clinic_id:
        errors.append("System admin should not have clinic_id")
    if role in (Role.CLINIC_ADMIN.value, Role.CLINIC_USER.value) and not clinic_id:
        errors.append("Clinic users must have clinic_id")
    return ValidationResult.from_errors(errors)


def _check_number(errors: list[str], value: Any, message: str, *, allow_zero: bool) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(message)
    elif value < 0 or (value == 0 and not allow_zero):
        errors.append(message)


def validate_invoice(invoice: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    if _blank(invoice.get("clinic_id")):
        errors.append("Clinic ID is required")
    _check_required_text(errors, invoice, "invoice_number", "Invoice number")
    _check_required_text(errors, invoice, "supplier", "Supplier")
    if _blank(invoice.get("emission_date")):
        errors.append("Emission date is required")
    products = invoice.get("products")
    if not isinstance(products, list):
        errors.append("Products array is required")
    elif not products:
        errors.append("At least one product is required")
    else:
        for index, product in enumerate(products, start=1):
            if not isinstance(product, Mapping):
                errors.append(f"Product {index}: Invalid entry")
                continue
            if _blank(product.get("product_id")):
                errors.append(f"Product {index}: Product ID is required")
            _check_number(errors, product.get("quantity"), f"Product {index}: Valid quantity is required", allow_zero=False)
            _check_number(errors, product.get("unit_price"), f"Product {index}: Valid unit price is required", allow_zero=True)
            if _blank(product.get("expiration_date")):
                errors.append(f"Product {index}: Expiration date is required")
            if _blank(product.get("lot")):
                errors.append(f"Product {index}: Lot is required")
    total = invoice.get("total_value")
    if isinstance(total, (int, float)) and total < 0:
        errors.append("Total value cannot be negative")
    status = invoice.get("status")
    if _blank(status):
        errors.append("Invoice status is required")
    elif not is_valid_invoice_status(status):
        errors.append("Invalid invoice status")
    return ValidationResult.from_errors(errors)


def validate_patient(patient: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    if _blank(patient.get("clinic_id")):
        errors.append("Clinic ID is required")
    _check_required_text(errors, patient, "first_name", "First name")
    _check_required_text(errors, patient, "last_name", "Last name")
    if _blank(patient.get("birth_date")):
        errors.append("Birth date is required")
    _check_phone(errors, patient.get("phone"))
    _check_email(errors, patient.get("email"))
    return ValidationResult.from_errors(errors)


def validate_request(request: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    if _blank(request.get("clinic_id")):
        errors.append("Clinic ID is required")
    if _blank(request.get("patient_id")):
        errors.append("Patient ID is required")
    if _blank(request.get("request_date")):
        errors.append("Request date is required")
    _check_required_text(errors, request, "treatment_type", "Treatment type")
    products = request.get("products_used")
    if not isinstance(products, list):
        errors.append("Products used array is required")
    elif not products:
        errors.append("At least one product must be used")
    else:
        for index, product in enumerate(products, start=1):
            if not isinstance(product, Mapping):
                errors.append(f"Product {index}: Invalid entry")
                continue
            if _blank(product.get("product_id")):
                errors.append(f"Product {index}: Product ID is required")
            _check_number(errors, product.get("quantity"), f"Product {index}: Valid quantity is required", allow_zero=False)
            if _blank(product.get("lot")):
                errors.append(f"Product {index}: Lot is required")
            if _blank(product.get("expiration_date")):
                errors.append(f"Product {index}: Expiration date is required")
    status = request.get("status")
    if _blank(status):
        errors.append("Request status is required")
    elif not is_valid_request_status(status):
        errors.append("Invalid request status")
    return ValidationResult.from_errors(errors)


def validate_product(product: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    _check_required_text(errors, product, "name", "Product name")
    _check_required_text(errors, product, "description", "Product description")
    code = product.get("rennova_code")
    if _blank(code):
        errors.append("Rennova code is required")
    elif not is_valid_product_code(code):
        errors.append("Invalid Rennova code format")
    _check_required_text(errors, product, "category", "Product category")
    unit_type = product.get("unit_type")
    if _blank(unit_type):
        errors.append("Unit type is required")
    elif not is_valid_unit_type(unit_type):
        errors.append("Invalid unit type")
    status = product.get("status")
    if _blank(status):
        errors.append("Product status is required")
    elif not is_valid_product_status(status):
        errors.append("Invalid product status")
    return ValidationResult.from_errors(errors)


def validate_inventory_item(item: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    if _blank(item.get("clinic_id")):
        errors.append("Clinic ID is required")
    if _blank(item.get("product_id")):
        errors.append("Product ID is required")
    _check_number(errors, item.get("quantity_in_stock"), "Valid quantity in stock is required", allow_zero=True)
    _check_number(errors, item.get("minimum_stock_level"), "Valid minimum stock level is required", allow_zero=True)
    entries = item.get("expiration_dates")
    if not isinstance(entries, list):
        errors.append("Expiration dates array is required")
    else:
        for index, entry in enumerate(entries, start=1):
            if not isinstance(entry, Mapping):
                errors.append(f"Expiration entry {index}: Invalid entry")
                continue
            if _blank(entry.get("date")):
                errors.append(f"Expiration entry {index}: Date is required")
            if _blank(entry.get("lot")):
                errors.append(f"Expiration entry {index}: Lot is required")
            _check_number(errors, entry.get("quantity"), f"Expiration entry {index}: Valid quantity is required", allow_zero=True)
    return ValidationResult.from_errors(errors)
