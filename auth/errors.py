"""
auth/errors.py -- Exceptions raised by the authentication core.

InvalidCredentials deliberately carries no reason the caller could show: every
rejection (unknown email, wrong password, directory-managed account, directory
said no) must look the same from the outside. The reason is kept on the
instance for operator logs only.
"""

from __future__ import annotations


class InvalidCredentials(Exception):
    """Login rejected. Always reported to the client with one generic message."""

    def __init__(self, reason: str = "invalid credentials") -> None:
        super().__init__("Invalid credentials")
        self.reason = reason


class AuthorizationDenied(Exception):
    """Caller is identified but their role does not permit the operation."""

    def __init__(self, required: str, actual: str) -> None:
        super().__init__(f"role {actual!r} does not satisfy {required!r}")
        self.required = required
        self.actual = actual
