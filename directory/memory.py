"""
directory/memory.py -- In-process simulated directory.

Selected with AD_BACKEND=memory for local development, and used by the test
suite in place of a real server. Error messages mimic the wording the
ActiveDirectory PowerShell module produces so DirectoryProvisioner's
normalization runs the same way against this backend as against the real one.
"""

from __future__ import annotations

import logging

from directory.base import DirectoryAccount, DirectoryAuthority, NewDirectoryAccount
from directory.errors import DirectoryOperationError, DirectoryUnavailable

logger = logging.getLogger("authenticator.directory")


class InMemoryDirectory(DirectoryAuthority):
    """Dict-backed DirectoryAuthority.

    Set `outage` to an exception instance to make every call raise it, which
    simulates an unreachable server. `calls` records (operation, email) pairs
    so tests can assert on what was attempted.
    """

    name = "memory"

    def __init__(self) -> None:
        self._accounts: dict[str, DirectoryAccount] = {}
        self._passwords: dict[str, str] = {}
        self.outage: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    def add_account(self, email: str, password: str, display_name: str = "", enabled: bool = True) -> None:
        """Seed an account directly, bypassing provisioning."""
        self._accounts[email] = DirectoryAccount(
            principal_name=email,
            display_name=display_name,
            enabled=enabled,
            username=email.split("@")[0],
        )
        self._passwords[email] = password

    def has_account(self, email: str) -> bool:
        return email in self._accounts

    def password_for(self, email: str) -> str | None:
        return self._passwords.get(email)

    def get_account(self, email: str) -> DirectoryAccount | None:
        """Read an account without recording a call or honouring `outage`."""
        return self._accounts.get(email)

    def remove_account(self, email: str) -> None:
        """Drop an account behind the provisioner's back."""
        self._accounts.pop(email, None)
        self._passwords.pop(email, None)

    def _record(self, operation: str, email: str) -> None:
        self.calls.append((operation, email))
        if self.outage is not None:
            raise self.outage

    def _require(self, email: str) -> DirectoryAccount:
        account = self._accounts.get(email)
        if account is None:
            raise DirectoryOperationError(f"Cannot find an object with identity: '{email}'")
        return account

    async def authenticate(self, email: str, password: str) -> bool:
        self._record("authenticate", email)
        account = self._accounts.get(email)
        if account is None or not account.enabled:
            return False
        return self._passwords.get(email) == password

    async def find_account(self, email: str) -> DirectoryAccount | None:
        self._record("find_account", email)
        return self._accounts.get(email)

    async def create_account(self, account: NewDirectoryAccount) -> None:
        self._record("create_account", account.email)
        if account.email in self._accounts:
            raise DirectoryOperationError("The specified account already exists")
        self._accounts[account.email] = DirectoryAccount(
            principal_name=account.email,
            display_name=account.name,
            enabled=True,
            username=account.username,
            distinguished_name=f"CN={account.name},{account.container}",
        )
        self._passwords[account.email] = account.password
        logger.debug("Simulated directory created %s", account.email)

    async def update_account(self, email: str, display_name: str) -> None:
        self._record("update_account", email)
        current = self._require(email)
        self._accounts[email] = DirectoryAccount(
            principal_name=current.principal_name,
            display_name=display_name,
            enabled=current.enabled,
            username=current.username,
            distinguished_name=current.distinguished_name,
        )

    async def delete_account(self, email: str) -> None:
        self._record("delete_account", email)
        self._require(email)
        del self._accounts[email]
        self._passwords.pop(email, None)

    async def reset_password(self, email: str, new_password: str) -> None:
        self._record("reset_password", email)
        self._require(email)
        self._passwords[email] = new_password


class UnconfiguredDirectory(DirectoryAuthority):
    """Stand-in used when a real backend is selected but its parameters are missing.

    Every call raises DirectoryUnavailable, which the authenticator treats as
    "directory says no" and the provisioner reports as a transport failure.
    """

    name = "unconfigured"

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def _fail(self):
        raise DirectoryUnavailable(self.reason)

    async def authenticate(self, email: str, password: str) -> bool:
        self._fail()

    async def find_account(self, email: str) -> DirectoryAccount | None:
        self._fail()

    async def create_account(self, account: NewDirectoryAccount) -> None:
        self._fail()

    async def update_account(self, email: str, display_name: str) -> None:
        self._fail()

    async def delete_account(self, email: str) -> None:
        self._fail()

    async def reset_password(self, email: str, new_password: str) -> None:
        self._fail()
