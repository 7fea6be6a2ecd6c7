import logging
from clinic_core.platform.ports.identity_accounts import AccountClaims, IdentityAccountError, IdentityAccountPort

log = logging.getLogger("identity.memory")

class InMemoryIdentityAccounts(IdentityAccountPort):
    """Process-local account store for local runs and tests."""

    def __init__(self):
        self.accounts: dict[str, dict] = {}

    async def create_account(self, account_id: str, email: str, password: str) -> None:
        if account_id in self.accounts:
            raise IdentityAccountError(f"account {account_id} already exists")
        if any(a["email"] == email for a in self.accounts.values()):
            raise IdentityAccountError("email-already-exists")
        self.accounts[account_id] = {"email": email, "claims": {}}
        log.info(f"[MEMORY IDP] created account id={account_id} email={email}")

    async def set_claims(self, account_id: str, claims: AccountClaims) -> None:
        if account_id not in self.accounts:
            raise IdentityAccountError(f"account {account_id} not found")
        self.accounts[account_id]["claims"] = dict(claims)

    async def delete_account(self, account_id: str) -> None:
        if self.accounts.pop(account_id, None) is None:
            raise IdentityAccountError(f"account {account_id} not found")
