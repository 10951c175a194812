"""
api/routes/admin.py -- Account administration endpoints.

Routes:
  GET    /api/admin/users                         -- list all accounts (superadmin)
  POST   /api/admin/users                         -- create account (superadmin)
  PUT    /api/admin/users/{id}                    -- change name / email / role (superadmin)
  DELETE /api/admin/users/{id}                    -- delete account (superadmin)
  POST   /api/admin/users/{id}/reset-password     -- set a new password (superadmin)
  GET    /api/admin/stats                         -- account statistics (admin or superadmin)
  GET    /api/admin/directory/{email}             -- directory existence probe (superadmin)

Every lifecycle route runs in the same order:
  validate -> store mutation -> provisioner (only if the store mutation
  succeeded and provisioning is enabled) -> activity log -> response

A duplicate email is a 409 raised by the store step, so the provisioner is
never reached for it. A provisioning failure never changes the status code:
the local change stands and the outcome is returned in the "directory" block.

Audit entries are filed under the acting admin's id; the description names
the target account.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from activity.models import PASSWORD_RESET, USER_CREATED, USER_DELETED, USER_UPDATED
from api.common import check_password, directory_status, email_conflict, get_user_or_404, record_activity
from api.models import (
    AdminUserCreate,
    AdminUserList,
    AdminUserResponse,
    AdminUserUpdate,
    DirectoryLookupResponse,
    MessageResponse,
    PasswordReset,
    RoleCount,
    StatsResponse,
    UserResponse,
)
from auth.dependencies import require_admin, require_superadmin
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from directory.provisioner import FAILED, SKIPPED, DirectoryProvisioner, ProvisioningOutcome

logger = logging.getLogger("authenticator.api")

_RECENT_DAYS = 30

# Auth policy:
# - GET /api/admin/stats: admin or superadmin (require_admin)
# - everything else:      superadmin only (require_superadmin)
router = APIRouter()


def _created_message(outcome: ProvisioningOutcome) -> str:
    if outcome.status == SKIPPED:
        return "User created successfully"
    if outcome.status != FAILED:
        return "User created successfully in the local database and the directory"
    if outcome.kind == "already_exists":
        return "User created locally; an account with this email already exists in the directory"
    return "User created locally; directory provisioning failed"


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=AdminUserList)
async def list_users(request: Request, current_user: User = Depends(require_superadmin)) -> AdminUserList:
    user_store: UserStore = request.app.state.user_store
    users = [UserResponse.from_user(u) for u in user_store.list_users()]
    return AdminUserList(users=users, total=len(users))


@router.post("/admin/users", response_model=AdminUserResponse, status_code=201)
async def create_user(
    request: Request,
    body: AdminUserCreate,
    current_user: User = Depends(require_superadmin),
) -> AdminUserResponse:
    """Create a local account and, when provisioning is on, its directory account.

    The plaintext password is used twice: hashed for the local record, and
    handed once to the provisioner as the initial directory password.
    """
    settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    provisioner: DirectoryProvisioner = request.app.state.provisioner

    check_password(request, body.password)
    if user_store.email_taken(body.email):
        raise email_conflict()
    password_hash = await asyncio.to_thread(hash_password, body.password, settings.bcrypt_salt_rounds)
    try:
        user_id = user_store.create_user(
            User(name=body.name, email=body.email, password_hash=password_hash, role=body.role.value)
        )
    except IntegrityError as exc:
        raise email_conflict() from exc

    outcome = await provisioner.create_account(body.name, body.email, body.password, username=body.username)

    description = f"Created user {body.email} (role: {body.role.value}, directory: {outcome.status})"
    record_activity(request, current_user.id, USER_CREATED, description)
    logger.info("Admin %s created user %s (directory: %s)", current_user.email, body.email, outcome.status)
    created = user_store.get_by_id(user_id)
    return AdminUserResponse(
        message=_created_message(outcome),
        user=UserResponse.from_user(created),
        directory=directory_status(outcome),
    )


@router.put("/admin/users/{user_id}", response_model=AdminUserResponse)
async def update_user(
    request: Request,
    user_id: int,
    body: AdminUserUpdate,
    current_user: User = Depends(require_superadmin),
) -> AdminUserResponse:
    """Change name, email and role. Only a name change is mirrored to the directory."""
    user_store: UserStore = request.app.state.user_store
    provisioner: DirectoryProvisioner = request.app.state.provisioner

    target = get_user_or_404(user_store, user_id)
    if user_store.email_taken(body.email, exclude_id=user_id):
        raise email_conflict()
    try:
        updated = user_store.update_user(user_id, name=body.name, email=body.email, role=body.role.value)
    except IntegrityError as exc:
        raise email_conflict() from exc
    if not updated:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})

    outcome = None
    if provisioner.enabled and body.name != target.name:
        outcome = await provisioner.update_account(target.email, name=body.name)

    description = f"Updated user {target.email} (name: {body.name}, email: {body.email}, role: {body.role.value})"
    record_activity(request, current_user.id, USER_UPDATED, description)
    return AdminUserResponse(
        message="User updated successfully",
        user=UserResponse.from_user(user_store.get_by_id(user_id)),
        directory=directory_status(outcome) if outcome is not None else None,
    )


@router.delete("/admin/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_superadmin),
) -> MessageResponse:
    """Delete an account. Deleting yourself here is refused; use DELETE /api/users/profile."""
    user_store: UserStore = request.app.state.user_store
    provisioner: DirectoryProvisioner = request.app.state.provisioner

    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "You cannot delete your own account."},
        )
    target = get_user_or_404(user_store, user_id)
    if not user_store.delete_user(user_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})

    outcome = None
    if provisioner.enabled:
        outcome = await provisioner.delete_account(target.email)

    record_activity(request, current_user.id, USER_DELETED, f"Deleted user {target.email} (role: {target.role})")
    logger.info("Admin %s deleted user %s", current_user.email, target.email)
    return MessageResponse(
        message="User deleted successfully",
        directory=directory_status(outcome) if outcome is not None else None,
    )


@router.post("/admin/users/{user_id}/reset-password", response_model=MessageResponse)
async def reset_password(
    request: Request,
    user_id: int,
    body: PasswordReset,
    current_user: User = Depends(require_superadmin),
) -> MessageResponse:
    """Set a new password for an account.

    Local accounts get a new hash (and a directory reset when provisioning is
    on). Directory-managed accounts have no local hash and never get one, so
    for them the directory reset is the whole operation, and without
    provisioning there is nothing to do (400).
    """
    settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    provisioner: DirectoryProvisioner = request.app.state.provisioner

    check_password(request, body.new_password, field="new_password")
    target = get_user_or_404(user_store, user_id)
    if target.is_directory_managed and not provisioner.enabled:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "directory_managed",
                "message": "This account is managed by the directory and directory provisioning is disabled.",
            },
        )

    if not target.is_directory_managed:
        new_hash = await asyncio.to_thread(hash_password, body.new_password, settings.bcrypt_salt_rounds)
        user_store.set_password(user_id, new_hash)

    outcome = None
    if provisioner.enabled:
        outcome = await provisioner.reset_password(target.email, body.new_password)

    record_activity(request, current_user.id, PASSWORD_RESET, f"Reset password for {target.email}")
    return MessageResponse(
        message="Password reset successfully",
        directory=directory_status(outcome) if outcome is not None else None,
    )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@router.get("/admin/stats", response_model=StatsResponse)
async def stats(request: Request, current_user: User = Depends(require_admin)) -> StatsResponse:
    user_store: UserStore = request.app.state.user_store
    counts = user_store.role_counts()
    return StatsResponse(
        total=sum(counts.values()),
        recent=user_store.count_created_since(_RECENT_DAYS),
        by_role=[RoleCount(role=role, count=count) for role, count in sorted(counts.items())],
    )


@router.get("/admin/directory/{email}", response_model=DirectoryLookupResponse)
async def directory_lookup(
    request: Request,
    email: str,
    current_user: User = Depends(require_superadmin),
) -> DirectoryLookupResponse:
    """Report whether the directory has an account for email. Lookup errors read as "no"."""
    provisioner: DirectoryProvisioner = request.app.state.provisioner
    exists = await provisioner.account_exists(email.strip())
    return DirectoryLookupResponse(email=email.strip(), exists=exists, provisioning_enabled=provisioner.enabled)
