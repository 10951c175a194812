"""
directory/ -- External directory (LDAP / Active Directory) integration.

build_directory() is the only place a backend is chosen. It runs once at
startup and the result is handed to HybridAuthenticator and
DirectoryProvisioner, so neither ever branches on configuration to decide
which backend it is talking to.

Layer rule: directory/ imports core/ only. It does NOT import from api/,
auth/ or activity/.
"""

from __future__ import annotations

import logging

from core.config import Settings
from directory.base import DirectoryAccount, DirectoryAuthority, NewDirectoryAccount
from directory.ldap import LdapDirectory
from directory.memory import InMemoryDirectory, UnconfiguredDirectory
from directory.powershell import PowerShellDirectory
from directory.provisioner import DirectoryProvisioner, ProvisioningOutcome

logger = logging.getLogger("authenticator.directory")

__all__ = [
    "DirectoryAccount",
    "DirectoryAuthority",
    "DirectoryProvisioner",
    "NewDirectoryAccount",
    "ProvisioningOutcome",
    "build_directory",
]


def build_directory(settings: Settings) -> DirectoryAuthority | None:
    """Return the configured DirectoryAuthority, or None when nothing uses one.

    A real backend with incomplete connection parameters becomes an
    UnconfiguredDirectory: logins treat it as unreachable and provisioning
    reports transport failures, rather than the process refusing to start.
    """
    if not (settings.directory_auth_enabled or settings.ad_create_users):
        return None
    if settings.ad_backend == "memory":
        logger.warning("Using the in-memory simulated directory. Accounts are lost on restart.")
        return InMemoryDirectory()
    if not settings.directory_configured:
        logger.warning("Directory configuration incomplete (AD_URL, AD_BASE_DN, AD_USERNAME, AD_PASSWORD).")
        return UnconfiguredDirectory("directory connection parameters are incomplete")
    reader = LdapDirectory(settings)
    if settings.ad_backend == "powershell":
        logger.info("Directory initialized: LDAP reads, PowerShell provisioning (%s)", settings.ad_url)
        return PowerShellDirectory(settings, reader)
    logger.info("Directory initialized: LDAP (%s)", settings.ad_url)
    return reader
