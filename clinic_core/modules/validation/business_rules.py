"""Cross-field business rules for invoices, patients and treatment requests.

Each rule set collects every violation before returning, the same way the
structural validators do. ``now`` is injectable so callers (and tests) can
pin the clock.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping

from clinic_core.core.errors import BusinessRuleError
from clinic_core.modules.validation.engine import ValidationResult

INVOICE_MAX_AGE = timedelta(days=365)
EXPIRATION_MAX_HORIZON = timedelta(days=3650)
REQUEST_MAX_AGE = timedelta(days=30)
TOTAL_TOLERANCE = 0.01
MIN_PATIENT_AGE = 18
MAX_PATIENT_AGE = 150
MAX_REQUEST_QUANTITY = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_datetime(value: Any) -> datetime | None:
    """Coerce ISO strings, dates and naive datetimes to aware UTC datetimes."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number(value: Any) -> float:
    return float(value) if _is_number(value) else 0.0


def _entries(value: Any) -> list[Mapping[str, Any]]:
    # malformed line items are reported by the structural validators
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def age_on(birth: date, today: date) -> int:
    years = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        years -= 1
    return years


def validate_invoice_rules(invoice: Mapping[str, Any], now: datetime | None = None) -> ValidationResult:
    now = now or _utcnow()
    errors: list[str] = []

    emission = as_datetime(invoice.get("emission_date"))
    if emission is None:
        errors.append("Invoice emission date is not a valid date")
    else:
        if emission > now:
            errors.append("Invoice emission date cannot be in the future")
        if emission < now - INVOICE_MAX_AGE:
            errors.append("Invoice emission date cannot be more than 1 year old")

    products = _entries(invoice.get("products"))
    for product in products:
        label = product.get("product_id") or "?"
        expiration = as_datetime(product.get("expiration_date"))
        if expiration is None:
            errors.append(f"Product {label} has an invalid expiration date")
            continue
        if expiration <= now:
            errors.append(f"Product {label} has already expired")
        if expiration > now + EXPIRATION_MAX_HORIZON:
            errors.append(f"Product {label} expiration date seems unrealistic")

    total = invoice.get("total_value")
    if products and _is_number(total):
        calculated = sum(_number(p.get("quantity")) * _number(p.get("unit_price")) for p in products)
        if abs(calculated - float(total)) > TOTAL_TOLERANCE:
            errors.append(
                f"Total value does not match sum of product values "
                f"(expected {calculated:.2f}, got {float(total):.2f})"
            )

    return ValidationResult.from_errors(errors)


def validate_patient_rules(patient: Mapping[str, Any], now: datetime | None = None) -> ValidationResult:
    now = now or _utcnow()
    errors: list[str] = []

    birth = as_datetime(patient.get("birth_date"))
    if birth is None:
        errors.append("Birth date is not a valid date")
        return ValidationResult.from_errors(errors)

    if birth > now:
        errors.append("Birth date cannot be in the future")
    else:
        age = age_on(birth.date(), now.date())
        if age > MAX_PATIENT_AGE:
            errors.append("Birth date indicates unrealistic age")
        if age < MIN_PATIENT_AGE:
            errors.append(f"Patient must be at least {MIN_PATIENT_AGE} years old for aesthetic treatments")

    return ValidationResult.from_errors(errors)


def validate_request_rules(request: Mapping[str, Any], now: datetime | None = None) -> ValidationResult:
    now = now or _utcnow()
    errors: list[str] = []

    requested = as_datetime(request.get("request_date"))
    if requested is None:
        errors.append("Request date is not a valid date")
    else:
        if requested > now:
            errors.append("Request date cannot be in the future")
        if requested < now - REQUEST_MAX_AGE:
            errors.append("Request date cannot be more than 30 days old")

    for product in _entries(request.get("products_used")):
        quantity = product.get("quantity")
        if _is_number(quantity) and quantity > MAX_REQUEST_QUANTITY:
            errors.append(f"Product {product.get('product_id') or '?'} quantity seems unreasonably high")

    return ValidationResult.from_errors(errors)


def ensure_valid(result: ValidationResult, message: str = "Business rule validation failed") -> None:
    if not result.valid:
        raise BusinessRuleError(message, errors=result.errors)
