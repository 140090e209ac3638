"""
api/routes/v1/auth.py -- Token issuance and identity endpoints.

Routes:
  POST /api/v1/auth/signup          -- create account; returns a token pair (201)
  POST /api/v1/auth/signin          -- email/password login; returns a token pair
  POST /api/v1/auth/refresh-token   -- exchange a refresh token for a new pair
  GET  /api/v1/auth/me              -- resolved caller with role and permissions

Security:
  [H2] signup and signin are rate-limited per IP (Settings.login_rate_limit).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  The elevated user type cannot be chosen at signup; it is created by seed.py.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import AuthResponse, MeResponse, RefreshRequest, SigninRequest, SignupRequest, UserSummary
from auth.dependencies import get_current_user
from auth.errors import AccountSuspendedError, BadRequestError, NotFoundError
from auth.models import User
from auth.store import RoleStore, UserStore
from auth.tokens import TokenService, authenticate_user, hash_password
from core.config import get_settings

logger = logging.getLogger("rolegate.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/signup:        public, rate-limited
# - POST /api/v1/auth/signin:        public, rate-limited
# - POST /api/v1/auth/refresh-token: public -- the refresh token is the credential
# - GET  /api/v1/auth/me:            requires auth (get_current_user)
router = APIRouter()


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def signup(request: Request, response: Response, body: SignupRequest) -> AuthResponse:
    """Create an account and sign it in.

    Staff accounts must name an existing role; other types may name one.
    """
    user_store: UserStore = request.app.state.user_store
    role_store: RoleStore = request.app.state.role_store
    token_service: TokenService = request.app.state.token_service

    user_type = body.type or _settings.default_user_type
    if user_type not in (_settings.default_user_type, _settings.staff_user_type):
        raise BadRequestError("Invalid user type.")

    if user_store.email_exists(body.email):
        raise BadRequestError("Email already exists")

    if user_type == _settings.staff_user_type and body.role is None:
        raise BadRequestError(f"Role is required for {_settings.staff_user_type} type")
    if body.role is not None and role_store.get_role(body.role) is None:
        raise NotFoundError("Role not found.")

    user = User(
        email=body.email,
        name=body.name,
        type=user_type,
        role_id=body.role,
        hashed_password=hash_password(body.password),
    )
    try:
        user.id = user_store.create_user(user)
    except IntegrityError as exc:
        # A concurrent signup won the race between email_exists() and insert.
        raise BadRequestError("Email already exists") from exc

    pair = token_service.issue(user)
    logger.info("User %s signed up (type=%s)", user.id, user.type)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(
        message="User registered successfully",
        user=UserSummary.from_user(user),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post("/auth/signin", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def signin(request: Request, response: Response, body: SigninRequest) -> AuthResponse:
    """Authenticate with email and password.

    Wrong email and wrong password get the same message. A suspended account
    is only reported after the password matched, and never gets tokens.
    """
    user_store: UserStore = request.app.state.user_store
    token_service: TokenService = request.app.state.token_service

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        raise BadRequestError("Invalid email or password")
    if user.suspended:
        logger.info("Signin refused for suspended user %s", user.id)
        raise AccountSuspendedError()

    pair = token_service.issue(user)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(
        message="User logged in successfully",
        user=UserSummary.from_user(user),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post("/auth/refresh-token", response_model=AuthResponse)
def refresh_token(request: Request, response: Response, body: RefreshRequest) -> AuthResponse:
    """Rotate a refresh token. See TokenService.rotate for the failure modes."""
    token_service: TokenService = request.app.state.token_service
    user, pair = token_service.rotate(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(
        message="Access token refreshed successfully",
        user=UserSummary.from_user(user),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the caller as resolved by the authentication pipeline."""
    role = current_user.role
    return MeResponse(
        user=UserSummary.from_user(current_user),
        role_name=role.name if role else None,
        permissions=sorted(role.permission_names) if role else [],
    )
