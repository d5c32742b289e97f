"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes accept an access token in the Authorization: Bearer header.
Access tokens are verified statelessly (signature, expiry, type claim); the
account row is then loaded so a deleted account or stale claims never
authenticate.

get_current_account() raises HTTP 401 with the structured error envelope.
An expired access token gets code "token_expired" so the client knows to
call /auth/refresh rather than send the user back to the login screen.

Layer rule: no imports from api/ or cache/. This module may import fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthError, TokenInvalid
from auth.models import Account
from auth.tokens import ACCESS, TokenIssuer


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_account(request: Request) -> Account:
    """Require a valid access token. Returns the sanitized Account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    issuer: TokenIssuer = request.app.state.token_issuer
    token = bearer_token(request)
    try:
        if token is None:
            raise TokenInvalid("Authentication required.")
        claims = issuer.verify(token, ACCESS)
        account = request.app.state.credentials.get_account(claims["user_id"])
    except AuthError as exc:
        code = exc.code if exc.code == "token_expired" else "unauthorized"
        raise HTTPException(
            status_code=401,
            detail={"code": code, "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    return account
