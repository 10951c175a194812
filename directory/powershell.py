"""
directory/powershell.py -- Active Directory provisioning through PowerShell.

For hosts that manage accounts with the ActiveDirectory PowerShell module
(RSAT) rather than over LDAP. Reads (authenticate, find_account) are delegated
to an LdapDirectory; only the four mutations shell out.

Injection safety:
  The script below is a constant. It is written to a private temporary
  directory and run with `-File`, and every value (names, email, password,
  target OU) is sent as one JSON document on stdin. Nothing user-supplied is
  ever part of the command line or the script text, and the password never
  touches the disk or the process argument list.

  Inside the script, Get-ADUser uses the script-block filter form, which
  binds $upn as a variable instead of parsing it as filter text.

Cleanup:
  The temporary directory is removed by its context manager before the call
  returns, on success, on failure, and on timeout. A process that outlives the
  timeout is killed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from pathlib import Path

from core.config import Settings
from directory.base import DirectoryAccount, DirectoryAuthority, NewDirectoryAccount, split_name
from directory.errors import DirectoryOperationError

logger = logging.getLogger("authenticator.directory")

_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
try {
    $p = [Console]::In.ReadToEnd() | ConvertFrom-Json
    Import-Module ActiveDirectory -ErrorAction Stop
    $upn = [string]$p.email

    function Find-Account {
        $u = Get-ADUser -Filter { UserPrincipalName -eq $upn }
        if (-not $u) { throw "Cannot find an object with identity: '$upn'" }
        return $u
    }

    switch ($p.action) {
        'create' {
            if (Get-ADUser -Filter { UserPrincipalName -eq $upn }) {
                throw 'User already exists in Active Directory'
            }
            $account = @{
                Name                 = [string]$p.name
                DisplayName          = [string]$p.name
                GivenName            = [string]$p.given_name
                UserPrincipalName    = $upn
                SamAccountName       = [string]$p.username
                EmailAddress         = $upn
                AccountPassword      = (ConvertTo-SecureString ([string]$p.password) -AsPlainText -Force)
                Enabled              = $true
                PasswordNeverExpires = $false
                CannotChangePassword = $false
                Path                 = [string]$p.container
            }
            if ($p.surname) { $account.Surname = [string]$p.surname }
            New-ADUser @account
        }
        'update' {
            $u = Find-Account
            $changes = @{ DisplayName = [string]$p.name; GivenName = [string]$p.given_name }
            if ($p.surname) { $changes.Surname = [string]$p.surname } else { $changes.Clear = 'sn' }
            Set-ADUser -Identity $u.DistinguishedName @changes
        }
        'delete' {
            $u = Find-Account
            Remove-ADUser -Identity $u.DistinguishedName -Confirm:$false
        }
        'reset' {
            $u = Find-Account
            $secure = ConvertTo-SecureString ([string]$p.password) -AsPlainText -Force
            Set-ADAccountPassword -Identity $u.DistinguishedName -NewPassword $secure -Reset
        }
        default { throw "Unknown action: $($p.action)" }
    }
    Write-Output "SUCCESS: $($p.action) $upn"
} catch {
    Write-Output "ERROR: $($_.Exception.Message)"
    exit 1
}
"""


class PowerShellDirectory(DirectoryAuthority):
    """DirectoryAuthority that mutates accounts by running a PowerShell script."""

    name = "powershell"

    def __init__(self, settings: Settings, reader: DirectoryAuthority) -> None:
        self._settings = settings
        self._reader = reader
        self._executable = settings.powershell_executable
        self._timeout = settings.ad_provisioning_timeout_seconds

    async def authenticate(self, email: str, password: str) -> bool:
        return await self._reader.authenticate(email, password)

    async def find_account(self, email: str) -> DirectoryAccount | None:
        return await self._reader.find_account(email)

    async def create_account(self, account: NewDirectoryAccount) -> None:
        await self._run(
            "create",
            {
                "email": account.email,
                "name": account.name,
                "given_name": account.given_name,
                "surname": account.surname,
                "username": account.username,
                "container": account.container,
                "password": account.password,
            },
        )

    async def update_account(self, email: str, display_name: str) -> None:
        given, surname = split_name(display_name)
        await self._run(
            "update",
            {"email": email, "name": display_name, "given_name": given, "surname": surname},
        )

    async def delete_account(self, email: str) -> None:
        await self._run("delete", {"email": email})

    async def reset_password(self, email: str, new_password: str) -> None:
        await self._run("reset", {"email": email, "password": new_password})

    async def _run(self, action: str, params: dict) -> str:
        """Run the provisioning script for one action. Returns the SUCCESS line."""
        payload = json.dumps({"action": action, **params}).encode("utf-8")
        with tempfile.TemporaryDirectory(prefix="authenticator-ps-") as workdir:
            script_path = Path(workdir) / "provision.ps1"
            script_path.write_text(_SCRIPT, encoding="utf-8")
            try:
                proc = await asyncio.create_subprocess_exec(
                    self._executable,
                    "-NoProfile",
                    "-NonInteractive",
                    "-ExecutionPolicy",
                    "Bypass",
                    "-File",
                    str(script_path),
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise DirectoryOperationError(f"could not start {self._executable}: {exc}") from exc
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                proc.kill()
                await proc.wait()
                raise DirectoryOperationError(f"{action} timed out after {self._timeout:g}s") from exc

        out = stdout.decode("utf-8", errors="replace").strip()
        err = stderr.decode("utf-8", errors="replace").strip()
        if err:
            logger.warning("PowerShell %s wrote to stderr: %s", action, err)
        for line in out.splitlines():
            if line.startswith("ERROR:"):
                raise DirectoryOperationError(line[len("ERROR:") :].strip())
        if proc.returncode != 0:
            raise DirectoryOperationError(err or out or f"{action} exited with status {proc.returncode}")
        for line in out.splitlines():
            if line.startswith("SUCCESS:"):
                logger.info("PowerShell %s succeeded for %s", action, params.get("email"))
                return line
        raise DirectoryOperationError(f"{action} produced no result line")
