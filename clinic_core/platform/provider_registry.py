from clinic_core.core.config import settings
from clinic_core.platform.ports.identity_accounts import IdentityAccountPort
from clinic_core.platform.adapters.identity_memory import InMemoryIdentityAccounts
from clinic_core.platform.adapters.identity_http import HttpIdentityAccounts

class ProviderRegistry:
    """Lazily builds external adapters; one instance per application."""

    def __init__(self, identity_accounts: IdentityAccountPort | None = None):
        self._identity_accounts = identity_accounts

    def identity_accounts(self) -> IdentityAccountPort:
        if self._identity_accounts is None:
            prov = (settings.IDENTITY_PROVIDER or "memory").lower()
            if prov == "http":
                self._identity_accounts = HttpIdentityAccounts()
            else:
                self._identity_accounts = InMemoryIdentityAccounts()
        return self._identity_accounts

    async def close(self) -> None:
        closer = getattr(self._identity_accounts, "aclose", None)
        if closer is not None:
            await closer()
