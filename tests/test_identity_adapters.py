import json

import httpx
import pytest

from clinic_core.platform.adapters.identity_http import HttpIdentityAccounts
from clinic_core.platform.adapters.identity_memory import InMemoryIdentityAccounts
from clinic_core.platform.ports.identity_accounts import IdentityAccountError, IdentityAccountPort
from clinic_core.platform.provider_registry import ProviderRegistry


async def test_memory_accounts_lifecycle():
    accounts = InMemoryIdentityAccounts()
    assert isinstance(accounts, IdentityAccountPort)
    await accounts.create_account("a1", "a@x.com", "pw")
    with pytest.raises(IdentityAccountError):
        await accounts.create_account("a2", "a@x.com", "pw")
    await accounts.set_claims("a1", {"role": "clinic_user", "clinic_id": "c1", "permissions": []})
    assert accounts.accounts["a1"]["claims"]["clinic_id"] == "c1"
    await accounts.delete_account("a1")
    with pytest.raises(IdentityAccountError):
        await accounts.delete_account("a1")


async def test_http_accounts_calls_admin_api():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path, json.loads(request.content or b"null")))
        assert request.headers["Authorization"] == "Bearer k"
        return httpx.Response(200, json={})

    accounts = HttpIdentityAccounts("http://idp", api_key="k", transport=httpx.MockTransport(handler))
    await accounts.create_account("a1", "a@x.com", "pw")
    await accounts.set_claims("a1", {"role": "clinic_admin"})
    await accounts.delete_account("a1")
    await accounts.aclose()

    assert [(m, p) for m, p, _ in calls] == [
        ("POST", "/accounts"), ("PUT", "/accounts/a1/claims"), ("DELETE", "/accounts/a1"),
    ]
    assert calls[0][2]["email"] == "a@x.com"


async def test_http_errors_become_identity_errors():
    accounts = HttpIdentityAccounts(
        "http://idp", api_key="k",
        transport=httpx.MockTransport(lambda request: httpx.Response(409, json={"error": "EMAIL_EXISTS"})),
    )
    with pytest.raises(IdentityAccountError):
        await accounts.create_account("a1", "a@x.com", "pw")
    await accounts.aclose()


async def test_registry_uses_injected_adapter():
    accounts = InMemoryIdentityAccounts()
    registry = ProviderRegistry(identity_accounts=accounts)
    assert registry.identity_accounts() is accounts
    await registry.close()
