"""
api/common.py -- Helpers shared by the route modules.

  record_activity()   best-effort audit write with client IP and user agent
  directory_status()  ProvisioningOutcome -> DirectoryStatus response block
  check_password()    MIN_PASSWORD_LENGTH policy (a runtime setting, so it
                      cannot live in the static pydantic models)
  get_user_or_404()
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from activity.store import ActivityStore
from api.models import DirectoryStatus
from auth.models import User
from auth.store import UserStore
from directory.provisioner import ProvisioningOutcome


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop if present, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def record_activity(request: Request, user_id: int, activity_type: str, description: str = "") -> None:
    """Append an audit entry for this request. Never raises (see ActivityStore.log_activity)."""
    store: ActivityStore = request.app.state.activity_store
    store.log_activity(
        user_id,
        activity_type,
        description,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


def directory_status(outcome: ProvisioningOutcome) -> DirectoryStatus:
    return DirectoryStatus(**outcome.to_dict())


def check_password(request: Request, password: str, field: str = "password") -> None:
    """Raise HTTP 400 if password is shorter than MIN_PASSWORD_LENGTH."""
    minimum = request.app.state.settings.min_password_length
    if len(password) < minimum:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "weak_password",
                "message": f"Password must be at least {minimum} characters.",
                "detail": field,
            },
        )


def get_user_or_404(store: UserStore, user_id: int) -> User:
    user = store.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return user


def email_conflict() -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"code": "conflict", "message": "A user with that email already exists."},
    )
