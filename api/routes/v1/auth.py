"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST  /api/v1/auth/register              -- create account; 201 with token pair
  POST  /api/v1/auth/login                 -- password login; token pair
  POST  /api/v1/auth/refresh               -- rotate refresh token; new pair
  POST  /api/v1/auth/logout                -- revoke refresh token (requires auth)
  GET   /api/v1/auth/me                    -- current account (requires auth)
  PATCH /api/v1/auth/me                    -- edit full_name / avatar_url (requires auth)
  POST  /api/v1/auth/change-password       -- requires auth + current password
  POST  /api/v1/auth/forgot-password       -- always 200, same message
  POST  /api/v1/auth/reset-password        -- consume reset token
  POST  /api/v1/auth/verify-email          -- consume verification token
  POST  /api/v1/auth/resend-verification   -- issue a new verification token

Security:
  [H2] register/login/refresh/forgot-password are rate-limited per IP.
  [C1] Login failures always return the same invalid_credentials error.
  [M5] Cache-Control: no-store on every response carrying tokens.
  forgot-password never reveals whether the email exists and never echoes
  the reset token; delivery is the mailer's job.

AuthError raised by the managers is turned into the error envelope by the
handler in api/main.py, so handlers here only express the happy path.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import auth_rate_limit, limiter
from api.models import (
    AccountResponse,
    AuthResponse,
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    ProfilePatch,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenRequest,
)
from auth.credentials import CredentialManager
from auth.dependencies import get_current_account
from auth.models import Account, AuthResult
from auth.sessions import SessionLifecycleManager

logger = logging.getLogger("stockfolio.api")

router = APIRouter()

_RESET_REQUESTED = "If an account exists for that email, a reset link has been sent."


def _credentials(request: Request) -> CredentialManager:
    return request.app.state.credentials


def _sessions(request: Request) -> SessionLifecycleManager:
    return request.app.state.sessions


def _token_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=AuthResponse.from_result(result).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    result = _credentials(request).register(body.email, body.password, body.full_name)
    return _token_response(result, status_code=201)


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, OAuth-only account, and wrong password all produce the
    same 401 invalid_credentials body [C1].
    """
    result = _credentials(request).login(body.email, body.password)
    return _token_response(result)


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is spent."""
    result = _sessions(request).refresh(body.refresh_token)
    return _token_response(result)


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    _sessions(request).request_reset(body.email)
    return MessageResponse(message=_RESET_REQUESTED)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    _sessions(request).reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset. Please log in again.")


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, body: TokenRequest) -> MessageResponse:
    _sessions(request).verify_email(body.token)
    return MessageResponse(message="Email verified.")


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    _sessions(request).resend_verification(body.email)
    return MessageResponse(message="Verification email sent.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, account: Account = Depends(get_current_account)) -> MessageResponse:
    _sessions(request).logout(account.id)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=AccountResponse)
def me(account: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_account(account)


@router.patch("/auth/me", response_model=AccountResponse)
def update_me(
    request: Request,
    body: ProfilePatch,
    account: Account = Depends(get_current_account),
) -> AccountResponse:
    """Apply only the fields present in the request body (exclude_unset)."""
    updated = _credentials(request).update_profile(account.id, body.model_dump(exclude_unset=True))
    return AccountResponse.from_account(updated)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    account: Account = Depends(get_current_account),
) -> MessageResponse:
    _credentials(request).change_password(account.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed.")
