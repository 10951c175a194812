"""
directory/errors.py -- Failure taxonomy for the external directory.

DirectoryUnavailable and DirectoryOperationError are what backends raise.
The Provisioning* classes are what DirectoryProvisioner hands back to callers
after normalizing whatever the backend produced; callers pick user-facing
wording from the class (or its `kind`), never from the raw text.
"""

from __future__ import annotations


class DirectoryError(Exception):
    """Base class for every directory failure."""


class DirectoryUnavailable(DirectoryError):
    """Directory could not be reached or is not configured.

    Raised by authenticate/find_account. The login path treats it exactly like
    a negative answer from the directory.
    """


class DirectoryOperationError(DirectoryError):
    """A mutating call failed. The message is the backend's raw diagnostic text."""


class ProvisioningError(DirectoryError):
    """A provisioning call failed. `detail` keeps the diagnostic for operator logs."""

    kind = "error"

    def __init__(self, email: str, detail: str) -> None:
        super().__init__(f"{email}: {detail}")
        self.email = email
        self.detail = detail


class ProvisioningAlreadyExists(ProvisioningError):
    kind = "already_exists"


class ProvisioningNotFound(ProvisioningError):
    kind = "not_found"


class ProvisioningTransportError(ProvisioningError):
    kind = "transport"
