"""Unit tests for directory/powershell.py -- PowerShellDirectory.

asyncio.create_subprocess_exec is patched with a fake process, so these tests
never need a PowerShell binary. They check the injection and secret-handling
contract rather than the script itself:
- every value travels in the JSON payload on stdin, never in argv
- the temporary script directory is gone once the call returns, on every path
- ERROR: lines, nonzero exit, missing result line and timeouts raise
  DirectoryOperationError
- reads are delegated to the LDAP reader
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from directory.base import NewDirectoryAccount
from directory.errors import DirectoryOperationError
from directory.memory import InMemoryDirectory
from directory.powershell import PowerShellDirectory

PASSWORD = "S3cret!pw; Remove-ADUser -Identity *"


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0, hang: bool = False) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self.returncode = returncode
        self._hang = hang
        self.stdin_data: bytes | None = None
        self.killed = False

    async def communicate(self, data: bytes | None = None):
        self.stdin_data = data
        if self._hang:
            await asyncio.sleep(5)
        return self._stdout, self._stderr

    def kill(self) -> None:
        self.killed = True

    async def wait(self) -> int:
        return -9


class Spawner:
    """Replacement for create_subprocess_exec that records what it was asked to run."""

    def __init__(self, process: FakeProcess | None = None, error: Exception | None = None) -> None:
        self.process = process
        self.error = error
        self.argv: tuple = ()
        self.script_path: Path | None = None
        self.script_text = ""

    async def __call__(self, *argv, **kwargs):
        self.argv = argv
        self.script_path = Path(argv[-1])
        self.script_text = self.script_path.read_text(encoding="utf-8")
        if self.error is not None:
            raise self.error
        return self.process


@pytest.fixture
def backend(settings_factory) -> PowerShellDirectory:
    settings = settings_factory(ad_backend="powershell", ad_provisioning_timeout_seconds=0.2)
    return PowerShellDirectory(settings, InMemoryDirectory())


def _new_account() -> NewDirectoryAccount:
    return NewDirectoryAccount(
        name="Ann Lee",
        email="ann@x.com",
        username="ann",
        container="CN=Users,DC=corp,DC=local",
        password=PASSWORD,
    )


def _run_with(spawner: Spawner, coro):
    with patch("directory.powershell.asyncio.create_subprocess_exec", spawner):
        return asyncio.run(coro)


class TestPayload:
    def test_values_only_on_stdin(self, backend) -> None:
        process = FakeProcess(stdout=b"SUCCESS: create ann@x.com\n")
        spawner = Spawner(process)

        _run_with(spawner, backend.create_account(_new_account()))

        argv = " ".join(spawner.argv)
        assert PASSWORD not in argv, "Password must never appear on the command line"
        assert "ann@x.com" not in argv
        assert "Ann Lee" not in argv
        assert spawner.argv[-2] == "-File"

        payload = json.loads(process.stdin_data.decode("utf-8"))
        assert payload["action"] == "create"
        assert payload["password"] == PASSWORD
        assert payload["email"] == "ann@x.com"
        assert payload["given_name"] == "Ann"
        assert payload["surname"] == "Lee"
        assert payload["container"] == "CN=Users,DC=corp,DC=local"

    def test_script_text_is_constant(self, backend) -> None:
        spawner = Spawner(FakeProcess(stdout=b"SUCCESS: reset ann@x.com"))
        _run_with(spawner, backend.reset_password("ann@x.com", PASSWORD))
        assert PASSWORD not in spawner.script_text
        assert "ann@x.com" not in spawner.script_text

    def test_update_splits_name(self, backend) -> None:
        process = FakeProcess(stdout=b"SUCCESS: update ann@x.com")
        _run_with(Spawner(process), backend.update_account("ann@x.com", "Ann Marie Lee"))
        payload = json.loads(process.stdin_data)
        assert payload["given_name"] == "Ann"
        assert payload["surname"] == "Marie Lee"


class TestCleanup:
    def test_removed_after_success(self, backend) -> None:
        spawner = Spawner(FakeProcess(stdout=b"SUCCESS: delete ann@x.com"))
        _run_with(spawner, backend.delete_account("ann@x.com"))
        assert not spawner.script_path.parent.exists()

    def test_removed_after_error(self, backend) -> None:
        spawner = Spawner(FakeProcess(stdout=b"ERROR: Cannot find an object with identity: 'ann@x.com'", returncode=1))
        with pytest.raises(DirectoryOperationError):
            _run_with(spawner, backend.delete_account("ann@x.com"))
        assert not spawner.script_path.parent.exists()

    def test_removed_after_timeout(self, backend) -> None:
        process = FakeProcess(hang=True)
        spawner = Spawner(process)
        with pytest.raises(DirectoryOperationError, match="timed out"):
            _run_with(spawner, backend.reset_password("ann@x.com", PASSWORD))
        assert process.killed
        assert not spawner.script_path.parent.exists()

    def test_removed_when_executable_missing(self, backend) -> None:
        spawner = Spawner(error=FileNotFoundError("powershell"))
        with pytest.raises(DirectoryOperationError, match="could not start"):
            _run_with(spawner, backend.create_account(_new_account()))
        assert not spawner.script_path.parent.exists()


class TestResultParsing:
    def test_error_line_becomes_message(self, backend) -> None:
        spawner = Spawner(FakeProcess(stdout=b"ERROR: User already exists in Active Directory\n", returncode=1))
        with pytest.raises(DirectoryOperationError, match="already exists"):
            _run_with(spawner, backend.create_account(_new_account()))

    def test_nonzero_exit_without_error_line(self, backend) -> None:
        spawner = Spawner(FakeProcess(stderr=b"Import-Module : module not found", returncode=1))
        with pytest.raises(DirectoryOperationError, match="module not found"):
            _run_with(spawner, backend.delete_account("ann@x.com"))

    def test_missing_success_line(self, backend) -> None:
        spawner = Spawner(FakeProcess(stdout=b"", returncode=0))
        with pytest.raises(DirectoryOperationError, match="no result line"):
            _run_with(spawner, backend.delete_account("ann@x.com"))

    def test_success_line_returned(self, backend) -> None:
        spawner = Spawner(FakeProcess(stdout=b"WARNING: noise\nSUCCESS: delete ann@x.com\n"))
        with patch("directory.powershell.asyncio.create_subprocess_exec", spawner):
            line = asyncio.run(backend._run("delete", {"email": "ann@x.com"}))
        assert line == "SUCCESS: delete ann@x.com"


class TestReads:
    def test_reads_delegate_to_reader(self, settings_factory) -> None:
        reader = InMemoryDirectory()
        reader.add_account("ann@x.com", "pw", display_name="Ann")
        backend = PowerShellDirectory(settings_factory(), reader)
        assert asyncio.run(backend.authenticate("ann@x.com", "pw")) is True
        assert asyncio.run(backend.find_account("ann@x.com")).display_name == "Ann"
        assert ("authenticate", "ann@x.com") in reader.calls
