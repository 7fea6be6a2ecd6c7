from typing import Protocol, TypedDict, runtime_checkable

class AccountClaims(TypedDict, total=False):
    role: str
    clinic_id: str | None
    permissions: list[str]

class IdentityAccountError(Exception):
    """Raised by adapters when the identity provider rejects or fails a call."""

@runtime_checkable
class IdentityAccountPort(Protocol):
    async def create_account(self, account_id: str, email: str, password: str) -> None: ...
    async def set_claims(self, account_id: str, claims: AccountClaims) -> None: ...
    async def delete_account(self, account_id: str) -> None: ...
