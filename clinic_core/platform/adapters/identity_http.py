import logging
import httpx
from clinic_core.core.config import settings
from clinic_core.platform.ports.identity_accounts import AccountClaims, IdentityAccountError, IdentityAccountPort

log = logging.getLogger("identity.http")

class HttpIdentityAccounts(IdentityAccountPort):
    """Identity provider admin REST API (accounts + custom claims)."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        base_url = base_url or settings.IDENTITY_API_URL
        if not base_url:
            raise RuntimeError("IDENTITY_API_URL not configured")
        headers = {"Authorization": f"Bearer {api_key or settings.IDENTITY_API_KEY or ''}"}
        self.client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=settings.IDENTITY_TIMEOUT_SECONDS, transport=transport)

    async def _call(self, method: str, path: str, json: dict | None = None) -> None:
        try:
            r = await self.client.request(method, path, json=json)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(f"Identity provider {method} {path} -> {e.response.status_code}: {e.response.text}")
            raise IdentityAccountError(f"{method} {path} failed with {e.response.status_code}") from e
        except httpx.RequestError as e:
            log.error(f"Identity provider {method} {path} unreachable: {e}")
            raise IdentityAccountError(f"{method} {path} failed: {e}") from e

    async def create_account(self, account_id: str, email: str, password: str) -> None:
        await self._call("POST", "/accounts", {"uid": account_id, "email": email, "password": password, "email_verified": False})

    async def set_claims(self, account_id: str, claims: AccountClaims) -> None:
        await self._call("PUT", f"/accounts/{account_id}/claims", dict(claims))

    async def delete_account(self, account_id: str) -> None:
        await self._call("DELETE", f"/accounts/{account_id}")

    async def aclose(self) -> None:
        await self.client.aclose()
