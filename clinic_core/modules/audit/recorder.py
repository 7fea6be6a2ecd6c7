import asyncio
import logging
import uuid
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_core.core.security import RequestMeta
from clinic_core.modules.audit.models import AuditEntry

log = logging.getLogger("audit.recorder")

SEVERITIES = ("info", "warning", "error")
STATUSES = ("success", "error")


def compute_changes(old: Mapping[str, Any], new: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Shallow key-by-key diff: only keys whose values differ, as {from, to}."""
    return {
        key: {"from": old.get(key), "to": value}
        for key, value in new.items()
        if old.get(key) != value
    }


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class AuditTrailRecorder:
    """Writes audit entries in their own session, off the request path.

    ``record`` never raises: a failed audit write is logged and dropped so it
    can never fail the business operation it accompanies. ``emit`` schedules
    ``record`` as a background task; ``drain`` waits for outstanding writes.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._pending: set[asyncio.Task] = set()

    async def record(self,
                     *,
                     user_id: str | uuid.UUID,
                     action_type: str,
                     resource_type: str,
                     resource_id: str | uuid.UUID,
                     clinic_id: str | uuid.UUID | None = None,
                     details: Mapping[str, Any] | None = None,
                     severity: str = "info",
                     status: str = "success",
                     meta: RequestMeta | None = None) -> None:
        try:
            if severity not in SEVERITIES:
                raise ValueError(f"invalid severity {severity!r}")
            if status not in STATUSES:
                raise ValueError(f"invalid status {status!r}")
            entry = AuditEntry(
                user_id=str(user_id),
                clinic_id=str(clinic_id) if clinic_id is not None else None,
                action_type=action_type,
                resource_type=resource_type,
                resource_id=str(resource_id),
                details=_jsonable(dict(details or {})),
                severity=severity,
                status=status,
                ip_address=meta.ip_address if meta else None,
                user_agent=meta.user_agent if meta else None,
                request_id=meta.request_id if meta else None,
            )
            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
        except Exception:
            log.exception("Failed to record audit entry action=%s resource=%s/%s", action_type, resource_type, resource_id)

    def emit(self, **fields: Any) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self.record(**fields))
        except RuntimeError:
            log.error("No running event loop; audit entry %s dropped", fields.get("action_type"))
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---- clinic lifecycle ----
    # Clinic management is a system-level operation (clinic_id=None); the clinic
    # id is carried both as resource_id and in details.clinic_id.

    def clinic_created(self, clinic: Mapping[str, Any], user_id: str | uuid.UUID, meta: RequestMeta | None = None) -> None:
        self.emit(
            user_id=user_id, action_type="clinic_created", resource_type="clinic", resource_id=clinic["id"],
            details={
                "clinic_id": clinic["id"],
                "clinic_name": clinic["name"],
                "clinic_cnpj": clinic["cnpj"],
                "clinic_email": clinic["email"],
                "clinic_city": clinic["city"],
                "admin_user_id": clinic["admin_user_id"],
            },
            meta=meta,
        )

    def clinic_updated(self, clinic_id: str | uuid.UUID, clinic_name: str, changes: Mapping[str, Any],
                       user_id: str | uuid.UUID, meta: RequestMeta | None = None) -> None:
        self.emit(
            user_id=user_id, action_type="clinic_updated", resource_type="clinic", resource_id=clinic_id,
            details={"clinic_id": clinic_id, "clinic_name": clinic_name, "changes": changes},
            meta=meta,
        )

    def clinic_status_changed(self, clinic_id: str | uuid.UUID, clinic_name: str, old_status: str, new_status: str,
                              user_id: str | uuid.UUID, meta: RequestMeta | None = None) -> None:
        self.emit(
            user_id=user_id, action_type="clinic_status_changed", resource_type="clinic", resource_id=clinic_id,
            details={"clinic_id": clinic_id, "clinic_name": clinic_name, "old_status": old_status, "new_status": new_status},
            meta=meta,
        )

    def clinic_deleted(self, clinic: Mapping[str, Any], removed_users: int, user_id: str | uuid.UUID,
                       meta: RequestMeta | None = None) -> None:
        self.emit(
            user_id=user_id, action_type="clinic_deleted", resource_type="clinic", resource_id=clinic["id"],
            details={"clinic_id": clinic["id"], "clinic_name": clinic["name"], "removed_users": removed_users},
            severity="warning", meta=meta,
        )

    def clinic_provisioning(self, clinic: Mapping[str, Any], user_id: str | uuid.UUID, *, ok: bool,
                            retried: bool = False, error: str | None = None, meta: RequestMeta | None = None) -> None:
        details = {"clinic_id": clinic["id"], "clinic_name": clinic["name"], "admin_user_id": clinic["admin_user_id"]}
        if error:
            details["error"] = error
        self.emit(
            user_id=user_id,
            action_type="clinic_provisioning_retried" if retried else "clinic_provisioning_failed",
            resource_type="clinic", resource_id=clinic["id"], details=details,
            severity="info" if ok else "error", status="success" if ok else "error", meta=meta,
        )

    # ---- users / security ----

    def user_created(self, user: Mapping[str, Any], user_id: str | uuid.UUID, meta: RequestMeta | None = None) -> None:
        self.emit(
            user_id=user_id, action_type="user_created", resource_type="user", resource_id=user["id"],
            clinic_id=user.get("clinic_id"),
            details={
                "clinic_id": user.get("clinic_id"),
                "email": user["email"],
                "role": user["role"],
                "permissions": user["permissions"],
            },
            meta=meta,
        )

    def user_updated(self, user: Mapping[str, Any], changes: Mapping[str, Any], user_id: str | uuid.UUID,
                     meta: RequestMeta | None = None) -> None:
        self.emit(
            user_id=user_id, action_type="user_updated", resource_type="user", resource_id=user["id"],
            clinic_id=user.get("clinic_id"),
            details={"clinic_id": user.get("clinic_id"), "email": user["email"], "changes": dict(changes)},
            meta=meta,
        )

    def user_deleted(self, user: Mapping[str, Any], user_id: str | uuid.UUID, meta: RequestMeta | None = None) -> None:
        self.emit(
            user_id=user_id, action_type="user_deleted", resource_type="user", resource_id=user["id"],
            clinic_id=user.get("clinic_id"),
            details={"clinic_id": user.get("clinic_id"), "email": user["email"], "role": user["role"]},
            severity="warning", meta=meta,
        )

    def security_event(self, event: str, user_id: str | uuid.UUID | None, clinic_id: str | uuid.UUID | None,
                       details: Mapping[str, Any] | None = None, meta: RequestMeta | None = None) -> None:
        failed = "failure" in event or "denied" in event
        suspicious = failed or "suspicious" in event
        self.emit(
            user_id=user_id or "anonymous", action_type="security_event", resource_type="authentication",
            resource_id=event, clinic_id=clinic_id,
            details={"clinic_id": clinic_id, **(details or {})} if clinic_id else dict(details or {}),
            severity="warning" if suspicious else "info", status="error" if failed else "success",
            meta=meta,
        )
