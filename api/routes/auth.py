"""
api/routes/auth.py -- Registration and login endpoints.

Routes:
  POST /api/auth/register  -- create a local account, return a JWT (201)
  POST /api/auth/login     -- local / directory / hybrid login, return a JWT

Security:
  [H2] Both routes are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] Login goes through HybridAuthenticator, which equalizes timing on the
       local path. Do NOT inline get_by_email() + verify_password().
  [M5] Cache-Control: no-store on every login response, success or failure.
  Every failed login raises InvalidCredentials. api/main.py turns it into one
  generic 401 whatever the cause (unknown email, wrong password,
  directory-managed account, directory down).
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from activity.models import LOGIN, LOGIN_FAILED, REGISTER
from api.common import check_password, email_conflict, record_activity
from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LoginResponse, RegisterRequest, RegisterResponse, UserResponse
from auth.authenticator import HybridAuthenticator
from auth.errors import InvalidCredentials
from auth.models import ROLE_USER, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password

logger = logging.getLogger("authenticator.api")

# Auth policy:
# - POST /api/auth/register: public, unless SELF_REGISTRATION_ENABLED=false
# - POST /api/auth/login:    public
router = APIRouter()


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create a local account with role "user" and log it in.

    Self-registered accounts are never provisioned into the directory; only
    an administrator can create directory accounts.
    """
    settings = request.app.state.settings
    if not settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    check_password(request, body.password)

    user_store: UserStore = request.app.state.user_store
    if user_store.email_taken(body.email):
        raise email_conflict()
    password_hash = await asyncio.to_thread(hash_password, body.password, settings.bcrypt_salt_rounds)
    try:
        user_id = user_store.create_user(
            User(name=body.name, email=body.email, password_hash=password_hash, role=ROLE_USER)
        )
    except IntegrityError as exc:
        raise email_conflict() from exc

    user = user_store.get_by_id(user_id)
    record_activity(request, user.id, REGISTER, "Account registered")
    logger.info("Registered %s (id=%d)", user.email, user.id)
    token = create_access_token(settings, user.id, user.email, user.role)
    return RegisterResponse(message="User created successfully", token=token, user=UserResponse.from_user(user))


@limiter.limit(login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate against the configured authority and return a JWT.

    LOGIN_FAILED is only recorded when a local account exists for the email;
    there is no user to file it under otherwise.
    """
    settings = request.app.state.settings
    authenticator: HybridAuthenticator = request.app.state.authenticator
    user_store: UserStore = request.app.state.user_store

    try:
        result = await authenticator.authenticate(body.email, body.password)
    except InvalidCredentials as exc:
        logger.info("Login rejected for %s: %s", body.email or "<empty>", exc.reason)
        existing = await asyncio.to_thread(user_store.get_by_email, body.email) if body.email else None
        if existing is not None:
            record_activity(request, existing.id, LOGIN_FAILED, "Failed login attempt")
        raise

    user = result.user
    record_activity(request, user.id, LOGIN, f"Logged in via {result.via}")
    token = create_access_token(settings, user.id, user.email, user.role)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(token=token, user=UserResponse.from_user(user), auth_method=result.via).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
