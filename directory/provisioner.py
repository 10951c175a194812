"""
directory/provisioner.py -- Mirror local account lifecycle into the directory.

Pattern: each public coroutine is one lifecycle event (create / update /
delete / password reset). It runs strictly in order: existence probe, then the
mutation. It never raises. The caller gets a ProvisioningOutcome and decides
the wording. The local store has already committed by the time any of these
run, and nothing here rolls it back: local state is the source of truth and
the directory is best effort.

Error normalization (_normalize):
  Backends report failures as raw text. Known phrasings for "already exists"
  and "not found" become ProvisioningAlreadyExists / ProvisioningNotFound,
  everything else (timeouts, sockets, PowerShell failures) becomes
  ProvisioningTransportError with the diagnostic preserved for operators.

Secrets:
  Plaintext passwords are passed straight to the backend and are never logged.
  If a backend echoes one back in an error message it is masked before the
  message is stored on the error or written to the log.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass

from core.config import Settings
from directory.base import DirectoryAccount, DirectoryAuthority, NewDirectoryAccount
from directory.errors import (
    ProvisioningAlreadyExists,
    ProvisioningError,
    ProvisioningNotFound,
    ProvisioningTransportError,
)

logger = logging.getLogger("authenticator.provisioning")

_ALREADY_EXISTS = re.compile(r"already exists|entryalreadyexists|already in use", re.IGNORECASE)
_NOT_FOUND = re.compile(r"cannot find an object|nosuchobject|not found|does not exist", re.IGNORECASE)

# sAMAccountName: at most 20 characters, none of these, no leading/trailing dots.
_USERNAME_MAX = 20
_USERNAME_FORBIDDEN = re.compile(r"[\"/\\\[\]:;|=,+*?<>@\s]")

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class ProvisioningOutcome:
    """Result of one provisioning call. Transient; never persisted."""

    status: str
    reason: str | None = None
    error: ProvisioningError | None = None

    @property
    def ok(self) -> bool:
        return self.status in (CREATED, UPDATED, DELETED)

    @property
    def kind(self) -> str | None:
        """Error kind for failed outcomes: already_exists, not_found or transport."""
        return self.error.kind if self.error is not None else None

    def to_dict(self) -> dict:
        return {"status": self.status, "reason": self.reason, "kind": self.kind}


def derive_username(email: str) -> str:
    """Build a sAMAccountName from the local part of email.

    Falls back to a short stable hash when nothing usable is left after
    stripping forbidden characters.
    """
    local = email.split("@", 1)[0]
    cleaned = _USERNAME_FORBIDDEN.sub("", local).strip(".")[:_USERNAME_MAX].rstrip(".")
    if cleaned:
        return cleaned
    return "user" + hashlib.sha256(email.encode("utf-8")).hexdigest()[:8]


def _mask(text: str, secret: str | None) -> str:
    if secret:
        return text.replace(secret, "***")
    return text


def _normalize(email: str, exc: Exception, secret: str | None = None) -> ProvisioningError:
    if isinstance(exc, ProvisioningError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return ProvisioningTransportError(email, "directory call timed out")
    detail = _mask(str(exc) or type(exc).__name__, secret)
    if _ALREADY_EXISTS.search(detail):
        return ProvisioningAlreadyExists(email, detail)
    if _NOT_FOUND.search(detail):
        return ProvisioningNotFound(email, detail)
    return ProvisioningTransportError(email, detail)


class DirectoryProvisioner:
    """Reconciles local account lifecycle events into a DirectoryAuthority.

    enabled is AD_CREATE_USERS and a backend being present. It is independent
    of AUTH_METHOD.
    """

    def __init__(self, settings: Settings, directory: DirectoryAuthority | None) -> None:
        self._settings = settings
        self._directory = directory
        self._timeout = settings.ad_provisioning_timeout_seconds

    @property
    def enabled(self) -> bool:
        return self._settings.ad_create_users and self._directory is not None

    async def _guard(self, coro, email: str, secret: str | None = None):
        """Await one backend call under the provisioning timeout, normalizing any failure."""
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except Exception as exc:
            raise _normalize(email, exc, secret) from exc

    async def _require_account(self, email: str) -> DirectoryAccount:
        account = await self._guard(self._directory.find_account(email), email)
        if account is None:
            raise ProvisioningNotFound(email, "account not present in directory")
        return account

    def _failed(self, operation: str, error: ProvisioningError) -> ProvisioningOutcome:
        log = logger.error if isinstance(error, ProvisioningTransportError) else logger.warning
        log("Directory %s failed for %s (%s): %s", operation, error.email, error.kind, error.detail)
        return ProvisioningOutcome(FAILED, reason=error.detail, error=error)

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    async def create_account(
        self, name: str, email: str, password: str, username: str | None = None
    ) -> ProvisioningOutcome:
        """Create the directory account for a freshly created local user.

        An existing directory account with the same email is never
        overwritten; the outcome is failed/already_exists instead.
        """
        if not self.enabled:
            return ProvisioningOutcome(SKIPPED, reason="directory provisioning disabled")
        try:
            if await self._guard(self._directory.find_account(email), email) is not None:
                raise ProvisioningAlreadyExists(email, "account already present in directory")
            account = NewDirectoryAccount(
                name=name,
                email=email,
                username=username or derive_username(email),
                container=self._settings.users_ou,
                password=password,
            )
            await self._guard(self._directory.create_account(account), email, secret=password)
        except ProvisioningError as exc:
            return self._failed("create", exc)
        logger.info("Directory account created for %s", email)
        return ProvisioningOutcome(CREATED)

    async def update_account(self, email: str, name: str | None = None) -> ProvisioningOutcome:
        """Push a display-name change. No-op when there is nothing to change."""
        if not self.enabled:
            return ProvisioningOutcome(SKIPPED, reason="directory provisioning disabled")
        if not name:
            return ProvisioningOutcome(SKIPPED, reason="no directory fields changed")
        try:
            await self._require_account(email)
            await self._guard(self._directory.update_account(email, name), email)
        except ProvisioningError as exc:
            return self._failed("update", exc)
        logger.info("Directory account updated for %s", email)
        return ProvisioningOutcome(UPDATED)

    async def delete_account(self, email: str) -> ProvisioningOutcome:
        """Remove the directory account. A second delete reports not_found."""
        if not self.enabled:
            return ProvisioningOutcome(SKIPPED, reason="directory provisioning disabled")
        try:
            await self._require_account(email)
            await self._guard(self._directory.delete_account(email), email)
        except ProvisioningError as exc:
            return self._failed("delete", exc)
        logger.info("Directory account deleted for %s", email)
        return ProvisioningOutcome(DELETED)

    async def reset_password(self, email: str, new_password: str) -> ProvisioningOutcome:
        """Set a new directory password. The account's enabled flag is left alone."""
        if not self.enabled:
            return ProvisioningOutcome(SKIPPED, reason="directory provisioning disabled")
        try:
            await self._require_account(email)
            await self._guard(self._directory.reset_password(email, new_password), email, secret=new_password)
        except ProvisioningError as exc:
            return self._failed("password reset", exc)
        logger.info("Directory password reset for %s", email)
        return ProvisioningOutcome(UPDATED)

    async def account_exists(self, email: str) -> bool:
        """Existence probe. Any lookup failure reads as "does not exist"."""
        if self._directory is None:
            return False
        try:
            return await self._guard(self._directory.find_account(email), email) is not None
        except ProvisioningError as exc:
            logger.warning("Directory lookup for %s failed: %s", email, exc.detail)
            return False
