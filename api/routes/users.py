"""
api/routes/users.py -- Self-service profile endpoints.

Routes:
  GET    /api/users/profile          -- current user's record
  PUT    /api/users/profile          -- change own name / email
  DELETE /api/users/profile          -- delete own account
  PUT    /api/users/change-password  -- change own local password
  GET    /api/users                  -- list all accounts (id, name, email, created_at)

These routes only touch the local store. Self-registration never checks the
directory, so a local account proves nothing about the directory account
with the same email; directory accounts are changed through the admin routes.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from activity.models import ACCOUNT_DELETED, PASSWORD_CHANGE_FAILED, PASSWORD_CHANGED, PROFILE_UPDATED
from api.common import check_password, email_conflict, record_activity
from api.models import MessageResponse, PasswordChange, ProfileResponse, ProfileUpdate, UserListRow, UserResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password, verify_password

logger = logging.getLogger("authenticator.api")

# Auth policy: every route requires authentication (get_current_user).
router = APIRouter()


@router.get("/users/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


@router.put("/users/profile", response_model=ProfileResponse)
async def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    """Update own name and email. 409 if the email belongs to another account."""
    user_store: UserStore = request.app.state.user_store

    if user_store.email_taken(body.email, exclude_id=current_user.id):
        raise email_conflict()
    try:
        user_store.update_user(current_user.id, name=body.name, email=body.email)
    except IntegrityError as exc:
        raise email_conflict() from exc

    record_activity(
        request, current_user.id, PROFILE_UPDATED, f"Profile updated - Name: {body.name}, Email: {body.email}"
    )
    updated = user_store.get_by_id(current_user.id)
    return ProfileResponse(message="Profile updated successfully", user=UserResponse.from_user(updated))


@router.delete("/users/profile", response_model=MessageResponse)
async def delete_profile(request: Request, current_user: User = Depends(get_current_user)) -> MessageResponse:
    """Permanently delete own account.

    The audit entry is written after the delete. Activity rows are not tied
    to the users table by a foreign key, so they survive their owner.
    """
    user_store: UserStore = request.app.state.user_store

    if not user_store.delete_user(current_user.id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})

    record_activity(request, current_user.id, ACCOUNT_DELETED, f"Account deleted: {current_user.email}")
    logger.info("User %s deleted their account", current_user.email)
    return MessageResponse(message="Account deleted successfully")


@router.put("/users/change-password", response_model=MessageResponse)
async def change_password(
    request: Request,
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Change own local password.

    Directory-managed accounts have no local password to change and get 400;
    they change their password in the directory itself.
    """
    settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store

    check_password(request, body.new_password, field="new_password")
    if body.current_password == body.new_password:
        raise HTTPException(
            status_code=400,
            detail={"code": "same_password", "message": "New password must be different from current password."},
        )
    if current_user.is_directory_managed:
        record_activity(
            request,
            current_user.id,
            PASSWORD_CHANGE_FAILED,
            "Attempted to change password for directory-managed account",
        )
        raise HTTPException(
            status_code=400,
            detail={
                "code": "directory_managed",
                "message": "Password changes are not allowed for directory-managed accounts.",
            },
        )
    if not await asyncio.to_thread(verify_password, body.current_password, current_user.password_hash):
        record_activity(
            request,
            current_user.id,
            PASSWORD_CHANGE_FAILED,
            "Failed password change attempt - incorrect current password",
        )
        raise HTTPException(
            status_code=400,
            detail={"code": "wrong_password", "message": "Current password is incorrect."},
        )

    new_hash = await asyncio.to_thread(hash_password, body.new_password, settings.bcrypt_salt_rounds)
    user_store.set_password(current_user.id, new_hash)

    record_activity(request, current_user.id, PASSWORD_CHANGED, "Password changed successfully")
    return MessageResponse(message="Password changed successfully")


@router.get("/users", response_model=list[UserListRow])
async def list_users(request: Request, current_user: User = Depends(get_current_user)) -> list[UserListRow]:
    user_store: UserStore = request.app.state.user_store
    return [
        UserListRow(id=u.id, name=u.name, email=u.email, created_at=u.created_at or "")
        for u in user_store.list_users()
    ]
