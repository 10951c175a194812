"""
auth/authenticator.py -- Login decision logic for local, directory and hybrid modes.

State machine for one login attempt:

  start
    ├─ empty email or password ............................ Rejected
    ├─ mode ad|hybrid: directory.authenticate()
    │    ├─ True  -> find_account() for display name
    │    │          -> store.ensure_mirrored() ............. Authenticated(via=directory)
    │    └─ False / error / timeout
    │         ├─ mode ad ................................... Rejected
    │         └─ mode hybrid -> local path
    └─ local path: store.get_by_email()
         ├─ not found ...................................... Rejected
         ├─ password_hash is None (directory-managed) ...... Rejected
         ├─ hash mismatch .................................. Rejected
         └─ match .......................................... Authenticated(via=local)

Every rejection raises the same InvalidCredentials. The root cause is logged
for operators and never returned to the caller.

Directory sub-steps are strictly sequential and each one is bounded by
AD_TIMEOUT_SECONDS. A timeout counts as "directory says no".

Layer rule: no imports from api/ or activity/. The directory backend is
received as a DirectoryAuthority instance; this module never picks one.
"""

from __future__ import annotations

import asyncio
import logging

from auth.errors import InvalidCredentials
from auth.models import AUTHORITY_DIRECTORY, AUTHORITY_LOCAL, AuthResult, User
from auth.store import UserStore
from auth.tokens import dummy_hash, verify_password
from core.config import Settings
from directory.base import DirectoryAuthority
from directory.errors import DirectoryError

logger = logging.getLogger("authenticator.auth")


class HybridAuthenticator:
    """Resolve an (email, password) pair to a local User.

    Usage:
        authenticator = HybridAuthenticator(settings, store, directory)
        result = await authenticator.authenticate("ann@x.com", "secret1")
        result.user, result.via
    """

    def __init__(self, settings: Settings, store: UserStore, directory: DirectoryAuthority | None) -> None:
        self._settings = settings
        self._store = store
        self._directory = directory
        self._mode = settings.auth_method
        self._timeout = settings.ad_timeout_seconds

    @property
    def mode(self) -> str:
        return self._mode

    async def authenticate(self, email: str, password: str) -> AuthResult:
        """Run the login state machine. Raises InvalidCredentials on any rejection."""
        email = (email or "").strip()
        if not email or not password:
            raise InvalidCredentials("empty email or password")

        if self._mode in ("ad", "hybrid"):
            user = await self._try_directory(email, password)
            if user is not None:
                logger.info("Login for %s authenticated by directory", email)
                return AuthResult(user=user, via=AUTHORITY_DIRECTORY)
            if self._mode == "ad":
                raise InvalidCredentials("directory rejected credentials")

        user = await asyncio.to_thread(self._check_local, email, password)
        logger.info("Login for %s authenticated locally", email)
        return AuthResult(user=user, via=AUTHORITY_LOCAL)

    # ------------------------------------------------------------------
    # Directory path
    # ------------------------------------------------------------------

    async def _try_directory(self, email: str, password: str) -> User | None:
        """Return the mirrored local User on directory success, None otherwise."""
        if self._directory is None:
            logger.warning("Directory login requested but no directory backend is configured")
            return None
        try:
            accepted = await asyncio.wait_for(self._directory.authenticate(email, password), self._timeout)
        except (DirectoryError, asyncio.TimeoutError) as exc:
            logger.warning("Directory authentication for %s failed: %s", email, str(exc) or "timed out")
            return None
        except Exception:
            logger.exception("Unexpected error during directory authentication for %s", email)
            return None
        if not accepted:
            logger.info("Directory rejected credentials for %s", email)
            return None

        display_name = await self._display_name(email)
        return await asyncio.to_thread(self._store.ensure_mirrored, email, display_name)

    async def _display_name(self, email: str) -> str:
        """Directory display name for email, or email itself if the lookup fails.

        The bind already succeeded at this point, so a failed attribute lookup
        does not turn the login into a rejection.
        """
        try:
            account = await asyncio.wait_for(self._directory.find_account(email), self._timeout)
        except (DirectoryError, asyncio.TimeoutError) as exc:
            logger.warning("Directory attribute lookup for %s failed: %s", email, str(exc) or "timed out")
            return email
        except Exception:
            logger.exception("Unexpected error during directory attribute lookup for %s", email)
            return email
        if account is None or not account.display_name:
            return email
        return account.display_name

    # ------------------------------------------------------------------
    # Local path
    # ------------------------------------------------------------------

    def _check_local(self, email: str, password: str) -> User:
        user = self._store.get_by_email(email)
        if user is None:
            # Burn the same bcrypt work as a real check so response time does
            # not reveal whether the email exists.
            verify_password(password, dummy_hash(self._settings.bcrypt_salt_rounds))
            raise InvalidCredentials("no local account")
        if user.password_hash is None:
            verify_password(password, dummy_hash(self._settings.bcrypt_salt_rounds))
            raise InvalidCredentials("directory-managed account has no local password")
        if not verify_password(password, user.password_hash):
            raise InvalidCredentials("local password mismatch")
        return user
