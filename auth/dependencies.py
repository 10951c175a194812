"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

Identity comes from an Authorization: Bearer <token> header carrying a JWT
issued by the login or register route. The token's user_id is re-read from
the users table on every request, so a role change or deletion takes effect
immediately instead of at token expiry.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_role() / require_admin() / require_superadmin() wrap
get_current_user() and raise AuthorizationDenied, which api/main.py maps to
HTTP 403. Not identified (401) and identified-but-not-permitted (403) never
share a status code.

Role rules:
  role_satisfies(actual, required): equal, or actual is superadmin.
  is_admin_role(actual): admin or superadmin.
Note that an admin does NOT satisfy require_role("user"); only superadmin is
a universal override.

Layer rule: may import fastapi (this module is part of the DI system) but
not api/, directory/ or activity/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthorizationDenied
from auth.models import ROLE_ADMIN, ROLE_SUPERADMIN, ROLES, User
from auth.tokens import decode_access_token

# ---------------------------------------------------------------------------
# Pure role checks
# ---------------------------------------------------------------------------


def role_satisfies(actual: str, required: str) -> bool:
    """True if a caller with role actual passes require_role(required)."""
    return actual == required or actual == ROLE_SUPERADMIN


def is_admin_role(actual: str) -> bool:
    return actual in (ROLE_ADMIN, ROLE_SUPERADMIN)


def check_role(user: User, required: str) -> User:
    """Return user if permitted, else raise AuthorizationDenied."""
    if required not in ROLES:
        raise ValueError(f"Unknown role: {required!r}")
    if not role_satisfies(user.role, required):
        raise AuthorizationDenied(required, user.role)
    return user


def check_admin(user: User) -> User:
    if not is_admin_role(user.role):
        raise AuthorizationDenied(ROLE_ADMIN, user.role)
    return user


# ---------------------------------------------------------------------------
# Request dependencies
# ---------------------------------------------------------------------------


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request from its Bearer token.

    Returns the User on success, None on any failure. Never raises.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not token:
        return None
    payload = decode_access_token(request.app.state.settings, token)
    if payload is None:
        return None
    return request.app.state.user_store.get_by_id(payload["user_id"])


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_role(role: str):
    """Dependency factory: require role, with superadmin always passing.

    Use as a FastAPI dependency:
        @router.get("/x")
        async def route(user: User = Depends(require_role("admin"))): ...
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")

    def dependency(request: Request) -> User:
        return check_role(get_current_user(request), role)

    return dependency


def require_admin(request: Request) -> User:
    """Require admin or superadmin. 401 if unauthenticated, 403 otherwise."""
    return check_admin(get_current_user(request))


def require_superadmin(request: Request) -> User:
    return check_role(get_current_user(request), ROLE_SUPERADMIN)
