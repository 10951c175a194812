"""
directory/ldap.py -- Native LDAP / Active Directory backend (ldap3).

ldap3 is synchronous, so every operation runs in a worker thread via
asyncio.to_thread. Server.connect_timeout and Connection.receive_timeout bound
each socket operation; the callers (authenticator, provisioner) add an overall
asyncio.wait_for on top.

User-supplied values only ever reach the server as escaped filter values,
escaped RDNs, or attribute values. None are spliced into a command string.

Active Directory only accepts unicodePwd changes over an encrypted
connection, so create_account and reset_password need AD_USE_SSL=true (or an
ldaps:// URL) against a real domain controller.
"""

from __future__ import annotations

import asyncio
import logging
import ssl

from ldap3 import MODIFY_REPLACE, NONE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from core.config import Settings
from directory.base import DirectoryAccount, DirectoryAuthority, NewDirectoryAccount, split_name
from directory.errors import DirectoryOperationError, DirectoryUnavailable

logger = logging.getLogger("authenticator.directory")

# userAccountControl flags
_ACCOUNTDISABLE = 0x0002
_NORMAL_ACCOUNT = 0x0200

_SEARCH_ATTRIBUTES = ["displayName", "cn", "userPrincipalName", "sAMAccountName", "userAccountControl"]
_USER_OBJECT_CLASSES = ["top", "person", "organizationalPerson", "user"]


def _describe(conn) -> str:
    """Render the last LDAP result as 'description: message' for diagnostics."""
    result = conn.result or {}
    description = result.get("description") or ""
    message = result.get("message") or ""
    return f"{description}: {message}".strip(": ") or "unknown LDAP error"


def _first(attributes: dict, key: str):
    values = attributes.get(key) or []
    return values[0] if values else None


class LdapDirectory(DirectoryAuthority):
    """DirectoryAuthority speaking LDAP directly."""

    name = "ldap"

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._timeout = settings.ad_timeout_seconds
        self._server: Server | None = None

    # ------------------------------------------------------------------
    # Connection plumbing
    # ------------------------------------------------------------------

    def _get_server(self) -> Server:
        if self._server is None:
            use_ssl = self._settings.ad_use_ssl or self._settings.ad_url.lower().startswith("ldaps://")
            tls = Tls(validate=ssl.CERT_REQUIRED) if use_ssl else None
            self._server = Server(
                self._settings.ad_url,
                use_ssl=use_ssl,
                tls=tls,
                get_info=NONE,
                connect_timeout=self._timeout,
            )
        return self._server

    def _connect(self, user: str, password: str) -> Connection:
        return Connection(
            self._get_server(),
            user=user,
            password=password,
            receive_timeout=self._timeout,
            raise_exceptions=False,
        )

    def _service_connection(self) -> Connection:
        conn = self._connect(self._settings.ad_username, self._settings.ad_password)
        if not conn.bind():
            detail = _describe(conn)
            conn.unbind()
            raise DirectoryUnavailable(f"service account bind failed: {detail}")
        return conn

    def _bind_name(self, email: str) -> str:
        if "@" not in email and self._settings.ad_domain:
            return f"{email}@{self._settings.ad_domain}"
        return email

    async def _run(self, func, *args):
        if not self._settings.directory_configured:
            raise DirectoryUnavailable("directory connection parameters are incomplete")
        try:
            return await asyncio.to_thread(func, *args)
        except LDAPException as exc:
            raise DirectoryUnavailable(f"{type(exc).__name__}: {exc}") from exc

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _search(self, conn: Connection, email: str) -> DirectoryAccount | None:
        conn.search(
            self._settings.ad_base_dn,
            f"(userPrincipalName={escape_filter_chars(email)})",
            search_scope=SUBTREE,
            attributes=_SEARCH_ATTRIBUTES,
            size_limit=1,
        )
        if not conn.entries:
            return None
        entry = conn.entries[0]
        attributes = entry.entry_attributes_as_dict
        flags = int(_first(attributes, "userAccountControl") or 0)
        return DirectoryAccount(
            principal_name=_first(attributes, "userPrincipalName") or email,
            display_name=_first(attributes, "displayName") or _first(attributes, "cn") or "",
            enabled=not flags & _ACCOUNTDISABLE,
            username=_first(attributes, "sAMAccountName"),
            distinguished_name=entry.entry_dn,
        )

    def _require_dn(self, conn: Connection, email: str) -> str:
        account = self._search(conn, email)
        if account is None or not account.distinguished_name:
            raise DirectoryOperationError(f"Cannot find an object with identity: '{email}'")
        return account.distinguished_name

    def _authenticate_sync(self, email: str, password: str) -> bool:
        # An empty password would turn the bind into an anonymous one, which
        # many servers accept.
        if not password:
            return False
        conn = self._connect(self._bind_name(email), password)
        try:
            return bool(conn.bind())
        finally:
            conn.unbind()

    def _find_sync(self, email: str) -> DirectoryAccount | None:
        conn = self._service_connection()
        try:
            return self._search(conn, email)
        finally:
            conn.unbind()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _create_sync(self, account: NewDirectoryAccount) -> None:
        dn = f"CN={escape_rdn(account.name)},{account.container}"
        attributes = {
            "displayName": account.name,
            "givenName": account.given_name,
            "userPrincipalName": account.email,
            "sAMAccountName": account.username,
            "mail": account.email,
            # Created disabled; enabled only once the password is in place.
            "userAccountControl": _NORMAL_ACCOUNT | _ACCOUNTDISABLE,
        }
        if account.surname:
            attributes["sn"] = account.surname
        conn = self._service_connection()
        try:
            if not conn.add(dn, _USER_OBJECT_CLASSES, attributes):
                raise DirectoryOperationError(_describe(conn))
            if not conn.extend.microsoft.modify_password(dn, account.password):
                detail = _describe(conn)
                conn.delete(dn)
                raise DirectoryOperationError(f"initial password rejected: {detail}")
            if not conn.modify(dn, {"userAccountControl": [(MODIFY_REPLACE, [_NORMAL_ACCOUNT])]}):
                raise DirectoryOperationError(f"account created but could not be enabled: {_describe(conn)}")
        finally:
            conn.unbind()

    def _update_sync(self, email: str, display_name: str) -> None:
        given, surname = split_name(display_name)
        changes = {
            "displayName": [(MODIFY_REPLACE, [display_name])],
            "givenName": [(MODIFY_REPLACE, [given])],
            "sn": [(MODIFY_REPLACE, [surname] if surname else [])],
        }
        conn = self._service_connection()
        try:
            dn = self._require_dn(conn, email)
            if not conn.modify(dn, changes):
                raise DirectoryOperationError(_describe(conn))
        finally:
            conn.unbind()

    def _delete_sync(self, email: str) -> None:
        conn = self._service_connection()
        try:
            dn = self._require_dn(conn, email)
            if not conn.delete(dn):
                raise DirectoryOperationError(_describe(conn))
        finally:
            conn.unbind()

    def _reset_password_sync(self, email: str, new_password: str) -> None:
        conn = self._service_connection()
        try:
            dn = self._require_dn(conn, email)
            if not conn.extend.microsoft.modify_password(dn, new_password):
                raise DirectoryOperationError(_describe(conn))
        finally:
            conn.unbind()

    # ------------------------------------------------------------------
    # DirectoryAuthority
    # ------------------------------------------------------------------

    async def authenticate(self, email: str, password: str) -> bool:
        return await self._run(self._authenticate_sync, email, password)

    async def find_account(self, email: str) -> DirectoryAccount | None:
        return await self._run(self._find_sync, email)

    async def create_account(self, account: NewDirectoryAccount) -> None:
        await self._run(self._create_sync, account)
        logger.info("LDAP account created for %s", account.email)

    async def update_account(self, email: str, display_name: str) -> None:
        await self._run(self._update_sync, email, display_name)

    async def delete_account(self, email: str) -> None:
        await self._run(self._delete_sync, email)

    async def reset_password(self, email: str, new_password: str) -> None:
        await self._run(self._reset_password_sync, email, new_password)
