"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
authenticator do the work; these classes only own the domain shape.

Layer rule: no imports from api/, directory/ or activity/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPERADMIN = "superadmin"

# Ordered weakest to strongest.
ROLES: tuple[str, ...] = (ROLE_USER, ROLE_ADMIN, ROLE_SUPERADMIN)

AUTHORITY_LOCAL = "local"
AUTHORITY_DIRECTORY = "directory"


@dataclass
class User:
    """A local account record. The users table is authoritative for role.

    email is the join key with the external directory (its UPN).

    password_hash is None for directory-managed accounts: those were created by
    a successful directory login (auto-mirroring) and can only ever be
    authenticated through the directory.
    """

    name: str
    email: str
    role: str = ROLE_USER
    id: int | None = None
    password_hash: str | None = None  # None = directory-managed account
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_directory_managed(self) -> bool:
        return self.password_hash is None


@dataclass(frozen=True)
class AuthResult:
    """Terminal Authenticated state of a login attempt."""

    user: User
    via: str  # AUTHORITY_LOCAL | AUTHORITY_DIRECTORY
