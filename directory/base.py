"""
directory/base.py -- The DirectoryAuthority capability.

Every backend (native LDAP, PowerShell automation, in-memory simulation)
implements the same six coroutines. HybridAuthenticator and
DirectoryProvisioner depend only on this interface, so which backend runs is a
construction-time decision (see directory.build_directory) and never a branch
inside business logic.

Contract:
  authenticate / find_account raise DirectoryUnavailable on transport or
  configuration problems. A wrong password is `False`, a missing account is
  `None`; neither is an exception.

  The four mutating calls return None on success and raise on failure. They
  do not pre-check existence; DirectoryProvisioner does that and normalizes
  whatever is raised here.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DirectoryAccount:
    """Attributes of an external account that this system consumes."""

    principal_name: str  # UPN, email-equivalent
    display_name: str = ""
    enabled: bool = True
    username: str | None = None  # sAMAccountName
    distinguished_name: str | None = None


@dataclass(frozen=True)
class NewDirectoryAccount:
    """Everything a backend needs to create one external account.

    password is the initial credential in plaintext. It is excluded from repr
    so the object can appear in log lines and tracebacks without leaking it.
    """

    name: str
    email: str
    username: str
    container: str
    password: str = field(repr=False)

    @property
    def given_name(self) -> str:
        return split_name(self.name)[0]

    @property
    def surname(self) -> str:
        return split_name(self.name)[1]


def split_name(name: str) -> tuple[str, str]:
    """Split a display name into (given name, surname). Everything after the first word is the surname."""
    parts = name.split()
    if not parts:
        return name, ""
    return parts[0], " ".join(parts[1:])


class DirectoryAuthority(abc.ABC):
    """Capability interface over an external identity directory."""

    name = "directory"

    @abc.abstractmethod
    async def authenticate(self, email: str, password: str) -> bool:
        """Return True if the directory accepts the credentials."""

    @abc.abstractmethod
    async def find_account(self, email: str) -> DirectoryAccount | None:
        """Return the account whose principal name is email, or None."""

    @abc.abstractmethod
    async def create_account(self, account: NewDirectoryAccount) -> None:
        """Create an enabled account with the given initial password."""

    @abc.abstractmethod
    async def update_account(self, email: str, display_name: str) -> None:
        """Change the display name (and given name / surname derived from it)."""

    @abc.abstractmethod
    async def delete_account(self, email: str) -> None:
        """Remove the account."""

    @abc.abstractmethod
    async def reset_password(self, email: str, new_password: str) -> None:
        """Set a new password without touching the enabled flag."""
