import logging
import uuid
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.core.config import settings
from clinic_core.core.errors import AuthorizationError, ConflictError, NotFoundError, ProvisioningError, ValidationError
from clinic_core.core.security import Principal, RequestMeta
from clinic_core.modules.access.isolation import ensure_access
from clinic_core.modules.access.permissions import (
    Permission, default_permissions, ensure_can_assign_role, ensure_permission, parse_role,
)
from clinic_core.modules.audit.recorder import AuditTrailRecorder, compute_changes
from clinic_core.modules.clinics.repository import ClinicRepository
from clinic_core.modules.users.models import User
from clinic_core.modules.users.repository import UserRepository
from clinic_core.modules.users.schemas import UserCreate, UserUpdate
from clinic_core.modules.validation.engine import ValidationResult, is_valid_role, validate_actor
from clinic_core.platform.ports.identity_accounts import IdentityAccountError, IdentityAccountPort

log = logging.getLogger("users.service")

class ActorService:
    def __init__(self, session: AsyncSession, audit: AuditTrailRecorder, identity: IdentityAccountPort):
        self.session = session
        self.repo = UserRepository(session)
        self.clinics = ClinicRepository(session)
        self.audit = audit
        self.identity = identity

    async def create_user(self, payload: UserCreate, principal: Principal, meta: RequestMeta | None = None) -> User:
        """Create an actor and its login account.

        Clinic admins may only create clinic-level actors inside their own
        clinic. When the login account cannot be provisioned the stored row is
        removed again so no actor exists without credentials.
        """
        ensure_permission(principal.permissions, Permission.MANAGE_USERS)
        if not is_valid_role(payload.role):
            raise ValidationError("Invalid user data", errors=["Invalid role"])
        target_role = parse_role(payload.role)
        ensure_can_assign_role(principal.role, target_role)
        # clinic-bound creators default to their own clinic
        clinic_id = payload.clinic_id or principal.clinic_id
        if clinic_id is not None:
            ensure_access(principal, clinic_id)

        permissions = payload.permissions
        if permissions is None:
            permissions = sorted(p.value for p in default_permissions(target_role))
        data = {
            "email": payload.email,
            "role": target_role.value,
            "clinic_id": str(clinic_id) if clinic_id else None,
            "permissions": permissions,
            "profile": payload.profile.model_dump(),
        }
        result = validate_actor(data)
        if len(payload.password) < settings.ADMIN_PASSWORD_MIN_LENGTH:
            result = result.merge(ValidationResult.from_errors(
                [f"Password must be at least {settings.ADMIN_PASSWORD_MIN_LENGTH} characters"]))
        result.raise_for_errors("Invalid user data")

        if clinic_id is not None and not await self.clinics.get(clinic_id):
            raise NotFoundError("Clinic not found")
        email = payload.email.strip().lower()
        if await self.repo.find_by_email(email):
            raise ConflictError("A user with this email already exists", field="email")

        user = await self.repo.create(
            id=uuid.uuid4(),
            email=email,
            role=target_role.value,
            clinic_id=clinic_id,
            permissions=sorted(set(permissions)),
            first_name=payload.profile.first_name.strip(),
            last_name=payload.profile.last_name.strip(),
            phone=payload.profile.phone,
        )
        await self.session.commit()

        claims = {"role": user.role, "clinic_id": str(user.clinic_id) if user.clinic_id else None,
                  "permissions": list(user.permissions)}
        try:
            await self.identity.create_account(str(user.id), email, payload.password)
            await self.identity.set_claims(str(user.id), claims)
        except IdentityAccountError as e:
            log.error("Login account for user %s could not be provisioned: %s", user.id, e)
            try:
                await self.identity.delete_account(str(user.id))
            except IdentityAccountError:
                log.debug("No login account to remove for %s", user.id)
            await self.repo.delete(user)
            await self.session.commit()
            raise ProvisioningError("User login account could not be provisioned") from e

        self.audit.user_created(user.to_record(), principal.user_id, meta)
        return user

    async def get_user(self, user_id: uuid.UUID, principal: Principal) -> User:
        user = await self.repo.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        # system-level actors are invisible to clinic-bound principals
        if user.clinic_id is None:
            if not principal.is_system:
                raise NotFoundError("User not found")
        else:
            ensure_access(principal, user.clinic_id)
        return user

    async def _get_managed(self, user_id: uuid.UUID, principal: Principal) -> User:
        ensure_permission(principal.permissions, Permission.MANAGE_USERS)
        user = await self.get_user(user_id, principal)
        ensure_can_assign_role(principal.role, parse_role(user.role))
        return user

    async def update_user(self, user_id: uuid.UUID, patch: UserUpdate, principal: Principal,
                          meta: RequestMeta | None = None) -> User:
        """Change an actor's role, permissions or profile and refresh its login claims.

        A role change without an explicit permission list resets permissions to
        the new role's defaults. Moving an actor across the system/clinic
        boundary is rejected by the clinic-binding checks.
        """
        user = await self._get_managed(user_id, principal)
        current_role = parse_role(user.role)
        target_role = current_role
        if patch.role is not None:
            if not is_valid_role(patch.role):
                raise ValidationError("Invalid user data", errors=["Invalid role"])
            target_role = parse_role(patch.role)
            if target_role != current_role:
                if user.id == principal.user_id:
                    raise AuthorizationError("Actors cannot change their own role")
                ensure_can_assign_role(principal.role, target_role)

        if patch.permissions is not None:
            permissions = list(patch.permissions)
        elif target_role != current_role:
            permissions = sorted(p.value for p in default_permissions(target_role))
        else:
            permissions = list(user.permissions or [])
        profile = patch.profile.model_dump(exclude_none=True) if patch.profile else {}
        merged_profile = {
            "first_name": profile.get("first_name", user.first_name),
            "last_name": profile.get("last_name", user.last_name),
            "phone": profile.get("phone", user.phone),
        }
        validate_actor({
            "email": user.email,
            "role": target_role.value,
            "clinic_id": str(user.clinic_id) if user.clinic_id else None,
            "permissions": permissions,
            "profile": merged_profile,
        }).raise_for_errors("Invalid user data")

        new_values = {
            "role": target_role.value,
            "permissions": sorted(set(permissions)),
            "first_name": merged_profile["first_name"].strip(),
            "last_name": merged_profile["last_name"].strip(),
            "phone": merged_profile["phone"],
        }
        changes = compute_changes(user.to_record(), new_values)
        if not changes:
            return user
        for key in changes:
            setattr(user, key, new_values[key])
        await self.session.commit()
        self.audit.user_updated(user.to_record(), changes, principal.user_id, meta)

        if "role" in changes or "permissions" in changes:
            claims = {"role": user.role, "clinic_id": str(user.clinic_id) if user.clinic_id else None,
                      "permissions": list(user.permissions)}
            try:
                await self.identity.set_claims(str(user.id), claims)
            except IdentityAccountError as e:
                log.error("Login claims for user %s could not be refreshed: %s", user.id, e)
                raise ProvisioningError("User was updated but the login claims could not be refreshed") from e
        return user

    async def delete_user(self, user_id: uuid.UUID, principal: Principal, meta: RequestMeta | None = None) -> None:
        user = await self._get_managed(user_id, principal)
        if user.id == principal.user_id:
            raise AuthorizationError("Actors cannot delete their own account")
        if user.clinic_id is not None:
            clinic = await self.clinics.get(user.clinic_id)
            if clinic and clinic.admin_user_id == user.id:
                raise ValidationError("Cannot delete user", errors=["The clinic's primary admin cannot be deleted"])

        record = user.to_record()
        await self.repo.delete(user)
        await self.session.commit()
        try:
            await self.identity.delete_account(record["id"])
        except IdentityAccountError as e:
            log.warning("Failed to delete login account of user %s: %s", record["id"], e)
        self.audit.user_deleted(record, principal.user_id, meta)

    async def list_for_clinic(self, clinic_id: uuid.UUID, principal: Principal) -> Sequence[User]:
        ensure_access(principal, clinic_id)
        return await self.repo.list_for_clinic(clinic_id)
