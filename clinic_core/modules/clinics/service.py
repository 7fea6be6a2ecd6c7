import logging
import uuid
from typing import Any, Mapping, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.core.config import settings
from clinic_core.core.errors import AuthorizationError, ConflictError, NotFoundError, ProvisioningError, ValidationError
from clinic_core.core.security import Principal, RequestMeta
from clinic_core.modules.access.isolation import ensure_access
from clinic_core.modules.access.permissions import Role, default_permissions, ensure_role
from clinic_core.modules.audit.recorder import AuditTrailRecorder, compute_changes
from clinic_core.modules.clinics.models import Clinic
from clinic_core.modules.clinics.repository import ClinicRepository
from clinic_core.modules.clinics.schemas import ClinicCreate, ClinicFilters, NotificationPreferences
from clinic_core.modules.users.models import User
from clinic_core.modules.users.repository import UserRepository
from clinic_core.modules.validation.engine import (
    CLINIC_STATUSES, format_cnpj, validate_clinic_creation, validate_clinic_update,
)
from clinic_core.platform.ports.identity_accounts import IdentityAccountError, IdentityAccountPort

log = logging.getLogger("clinics.service")

UPDATABLE_FIELDS = ("name", "email", "phone", "address", "city")


def default_settings(timezone: str | None = None) -> dict:
    return {
        "timezone": timezone or settings.DEFAULT_TIMEZONE,
        "notification_preferences": NotificationPreferences().model_dump(),
    }


def merge_settings(current: Mapping[str, Any] | None, patch: Mapping[str, Any]) -> dict:
    """Merge a settings patch into the stored settings; nested preferences merge key-wise."""
    current = dict(current or default_settings())
    merged = {**current, **{k: v for k, v in patch.items() if v is not None and k != "notification_preferences"}}
    prefs_patch = patch.get("notification_preferences") or {}
    merged["notification_preferences"] = {
        **(current.get("notification_preferences") or {}),
        **{k: v for k, v in prefs_patch.items() if v is not None},
    }
    return merged


def _admin_claims(clinic_id: uuid.UUID) -> dict:
    return {
        "role": Role.CLINIC_ADMIN.value,
        "clinic_id": str(clinic_id),
        "permissions": sorted(p.value for p in default_permissions(Role.CLINIC_ADMIN)),
    }


class ClinicService:
    """Clinic (tenant) lifecycle: create, update, status toggle, search, delete.

    Every operation authorizes before it validates and validates before it
    touches the store. Audit entries are emitted after the store commit and
    never block or fail the operation.
    """

    def __init__(self, session: AsyncSession, audit: AuditTrailRecorder, identity: IdentityAccountPort):
        self.session = session
        self.repo = ClinicRepository(session)
        self.users = UserRepository(session)
        self.audit = audit
        self.identity = identity

    async def create(self, payload: ClinicCreate, principal: Principal, meta: RequestMeta | None = None) -> Clinic:
        ensure_role(principal.role, Role.SYSTEM_ADMIN, action="create clinics")

        data = payload.model_dump()
        validate_clinic_creation(data, min_password_length=settings.ADMIN_PASSWORD_MIN_LENGTH).raise_for_errors("Invalid clinic data")

        cnpj = format_cnpj(payload.cnpj)
        email = payload.email.strip().lower()
        admin_email = payload.admin_email.strip().lower()

        if await self.repo.find_by_cnpj(cnpj):
            raise ConflictError("A clinic with this CNPJ already exists", field="cnpj")
        if await self.repo.find_by_email(email):
            raise ConflictError("A clinic with this email already exists", field="email")
        if await self.users.find_by_email(admin_email):
            raise ConflictError("A user with this admin email already exists", field="admin_email")

        clinic_id, admin_id = uuid.uuid4(), uuid.uuid4()
        clinic_settings = default_settings()
        if payload.settings is not None:
            clinic_settings = merge_settings(clinic_settings, payload.settings.model_dump())

        # clinic and its bootstrap admin are written together or not at all
        try:
            clinic = await self.repo.create(
                id=clinic_id,
                name=payload.name.strip(),
                cnpj=cnpj,
                email=email,
                phone=payload.phone.strip(),
                address=payload.address.strip(),
                city=payload.city.strip(),
                admin_user_id=admin_id,
                status="active",
                provisioning_status="pending",
                settings=clinic_settings,
            )
            await self.users.create(
                id=admin_id,
                email=admin_email,
                role=Role.CLINIC_ADMIN.value,
                clinic_id=clinic_id,
                permissions=sorted(p.value for p in default_permissions(Role.CLINIC_ADMIN)),
                first_name=payload.admin_profile.first_name.strip(),
                last_name=payload.admin_profile.last_name.strip(),
                phone=payload.admin_profile.phone,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        record = clinic.to_record()
        log.info("Clinic %s created by %s", clinic_id, principal.user_id)

        # Login credentials live outside the store transaction. A failure here
        # leaves the clinic flagged for reconciliation instead of half-created.
        try:
            await self._provision_admin(admin_id, admin_email, payload.admin_password, clinic_id)
        except IdentityAccountError as e:
            await self._mark_provisioning(clinic, ok=False, error=str(e))
            self.audit.clinic_created(record, principal.user_id, meta)
            self.audit.clinic_provisioning(record, principal.user_id, ok=False, error=str(e), meta=meta)
            raise ProvisioningError(
                "Clinic was created but the admin login account could not be provisioned",
                clinic_id=str(clinic_id),
            ) from e

        await self._mark_provisioning(clinic, ok=True)
        self.audit.clinic_created(record, principal.user_id, meta)
        return clinic

    async def _provision_admin(self, admin_id: uuid.UUID, email: str, password: str, clinic_id: uuid.UUID) -> None:
        await self.identity.create_account(str(admin_id), email, password)
        await self.identity.set_claims(str(admin_id), _admin_claims(clinic_id))

    async def _mark_provisioning(self, clinic: Clinic, *, ok: bool, error: str | None = None) -> None:
        clinic.provisioning_status = "provisioned" if ok else "provisioning_failed"
        clinic.provisioning_error = None if ok else (error or "")[:500]
        await self.session.commit()
        if not ok:
            log.error("Provisioning failed for clinic %s: %s", clinic.id, error)

    async def get(self, clinic_id: uuid.UUID, principal: Principal) -> Clinic:
        ensure_access(principal, clinic_id)
        clinic = await self.repo.get(clinic_id)
        if not clinic:
            raise NotFoundError("Clinic not found")
        return clinic

    async def list(self, principal: Principal) -> Sequence[Clinic]:
        if principal.role == Role.SYSTEM_ADMIN:
            return await self.repo.list()
        if principal.role == Role.CLINIC_ADMIN and principal.clinic_id is not None:
            clinic = await self.repo.get(principal.clinic_id)
            return [clinic] if clinic else []
        raise AuthorizationError("Insufficient permissions to list clinics")

    async def search(self, query: str | None, filters: ClinicFilters, principal: Principal) -> Sequence[Clinic]:
        ensure_role(principal.role, Role.SYSTEM_ADMIN, action="search clinics")
        return await self.repo.search(query, filters)

    async def update(self, clinic_id: uuid.UUID, patch: Mapping[str, Any], principal: Principal,
                     meta: RequestMeta | None = None) -> Clinic:
        ensure_role(principal.role, Role.SYSTEM_ADMIN, Role.CLINIC_ADMIN, action="update clinic")
        ensure_access(principal, clinic_id)

        if "status" in patch:
            raise ValidationError("Invalid clinic data", errors=["Status can only be changed through the status toggle"])
        validate_clinic_update(patch).raise_for_errors("Invalid clinic data")

        current = await self.repo.get(clinic_id)
        if not current:
            raise NotFoundError("Clinic not found")

        new_values: dict[str, Any] = {k: patch[k].strip() for k in UPDATABLE_FIELDS if patch.get(k) is not None}
        if "email" in new_values:
            new_values["email"] = new_values["email"].lower()
            if new_values["email"] != current.email and await self.repo.find_by_email(new_values["email"], exclude_id=clinic_id):
                raise ConflictError("A clinic with this email already exists", field="email")
        if patch.get("settings") is not None:
            new_values["settings"] = merge_settings(current.settings, patch["settings"])

        changes = compute_changes(current.to_record(), new_values)
        for key in changes:
            setattr(current, key, new_values[key])
        await self.session.commit()

        self.audit.clinic_updated(str(clinic_id), current.name, changes, principal.user_id, meta)
        return current

    async def toggle_status(self, clinic_id: uuid.UUID, new_status: str, principal: Principal,
                            meta: RequestMeta | None = None) -> Clinic:
        ensure_role(principal.role, Role.SYSTEM_ADMIN, action="toggle clinic status")
        if new_status not in CLINIC_STATUSES:
            raise ValidationError("Invalid status value", errors=['Invalid status value. Must be "active" or "inactive"'])

        clinic = await self.repo.get(clinic_id)
        if not clinic:
            raise NotFoundError("Clinic not found")
        if clinic.status == new_status:
            raise ValidationError(f"Clinic is already {new_status}", errors=[f"Clinic is already {new_status}"])

        old_status = clinic.status
        clinic.status = new_status
        await self.session.commit()

        self.audit.clinic_status_changed(str(clinic_id), clinic.name, old_status, new_status, principal.user_id, meta)
        return clinic

    async def delete(self, clinic_id: uuid.UUID, principal: Principal, meta: RequestMeta | None = None) -> None:
        ensure_role(principal.role, Role.SYSTEM_ADMIN, action="delete clinics")
        clinic = await self.repo.get(clinic_id)
        if not clinic:
            raise NotFoundError("Clinic not found")

        record = clinic.to_record()
        users: list[User] = list(await self.users.list_for_clinic(clinic_id))
        try:
            for user in users:
                await self.users.delete(user)
            await self.repo.delete(clinic)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        for user in users:
            try:
                await self.identity.delete_account(str(user.id))
            except IdentityAccountError as e:
                log.warning("Failed to delete login account %s of clinic %s: %s", user.id, clinic_id, e)

        self.audit.clinic_deleted(record, len(users), principal.user_id, meta)

    async def list_pending_provisioning(self, principal: Principal) -> Sequence[Clinic]:
        ensure_role(principal.role, Role.SYSTEM_ADMIN, action="view provisioning status")
        return await self.repo.list_by_provisioning_status(("pending", "provisioning_failed"))

    async def retry_provisioning(self, clinic_id: uuid.UUID, admin_password: str, principal: Principal,
                                 meta: RequestMeta | None = None) -> Clinic:
        """Re-create the bootstrap admin's login account for a clinic flagged as failed."""
        ensure_role(principal.role, Role.SYSTEM_ADMIN, action="retry clinic provisioning")
        clinic = await self.repo.get(clinic_id)
        if not clinic:
            raise NotFoundError("Clinic not found")
        if clinic.provisioning_status == "provisioned":
            raise ValidationError("Clinic admin account is already provisioned", errors=["Clinic admin account is already provisioned"])
        if len(admin_password or "") < settings.ADMIN_PASSWORD_MIN_LENGTH:
            raise ValidationError("Invalid password", errors=[f"Admin password must be at least {settings.ADMIN_PASSWORD_MIN_LENGTH} characters"])
        admin = await self.users.get(clinic.admin_user_id)
        if not admin:
            raise NotFoundError("Clinic admin user not found")

        record = clinic.to_record()
        try:
            # a previous attempt may have created the account but not its claims
            await self.identity.delete_account(str(admin.id))
        except IdentityAccountError:
            log.debug("No stale login account for %s", admin.id)
        try:
            await self._provision_admin(admin.id, admin.email, admin_password, clinic.id)
        except IdentityAccountError as e:
            await self._mark_provisioning(clinic, ok=False, error=str(e))
            self.audit.clinic_provisioning(record, principal.user_id, ok=False, error=str(e), meta=meta)
            raise ProvisioningError("Admin login account could not be provisioned", clinic_id=str(clinic_id)) from e

        await self._mark_provisioning(clinic, ok=True)
        self.audit.clinic_provisioning(record, principal.user_id, ok=True, retried=True, meta=meta)
        return clinic
