"""Domain error taxonomy.

Every error carries an HTTP ``status_code`` and a machine ``code`` so the
transport layer can render it without inspecting messages.
"""
from typing import Any


class ClinicCoreError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Any | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ClinicCoreError):
    """Structural validation failure; ``errors`` holds every violation found."""
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", errors: list[str] | None = None):
        self.errors = list(errors or [])
        super().__init__(message, details=self.errors or None)


class BusinessRuleError(ClinicCoreError):
    status_code = 422
    code = "BUSINESS_RULE_VIOLATION"

    def __init__(self, message: str = "Business rule validation failed", errors: list[str] | None = None):
        self.errors = list(errors or [])
        super().__init__(message, details=self.errors or None)


class AuthorizationError(ClinicCoreError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(ClinicCoreError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ConflictError(ClinicCoreError):
    """Uniqueness violation; ``field`` names the colliding attribute."""
    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str, field: str):
        self.field = field
        super().__init__(message, details={"field": field})


class ProvisioningError(ClinicCoreError):
    # identity account could not be created after the store transaction committed
    status_code = 502
    code = "PROVISIONING_FAILED"

    def __init__(self, message: str, clinic_id: str | None = None):
        self.clinic_id = clinic_id
        super().__init__(message, details={"clinic_id": clinic_id} if clinic_id else None)


class RateLimitError(ClinicCoreError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Too many requests, please try again later"):
        super().__init__(message)
