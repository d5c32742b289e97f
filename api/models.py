"""
API request and response models for StockFolio REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
separate from the dataclasses in auth/models.py, which own the internal
domain shape. Route handlers map between the two.

Request models only check shape (types, lengths). Business rules such as the
password policy live in auth/ and surface as AuthError, so the same rules
apply whether a call comes from HTTP or in-process.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account, AuthResult

# Request-size cap only. The byte limit bcrypt imposes (72) is enforced by the
# password policy in auth/validation.py so it surfaces as a 400, not a 422.
_MAX_PASSWORD = 128


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)
    password: str = Field(max_length=_MAX_PASSWORD)
    full_name: str = Field(max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=_MAX_PASSWORD)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class ProfilePatch(BaseModel):
    """PATCH /auth/me body. Only fields actually sent are applied."""

    full_name: Optional[str] = Field(default=None, max_length=255)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(max_length=_MAX_PASSWORD)
    new_password: str = Field(max_length=_MAX_PASSWORD)


class EmailRequest(BaseModel):
    email: str = Field(max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(max_length=_MAX_PASSWORD)


class TokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Has no field for the hash or any token."""

    id: int
    email: str
    full_name: str
    is_verified: bool
    is_premium: bool
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            full_name=account.full_name,
            is_verified=account.is_verified,
            is_premium=account.is_premium,
            avatar_url=account.avatar_url,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    account: AccountResponse

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
            account=AccountResponse.from_account(result.account),
        )


class MessageResponse(BaseModel):
    message: str


class QuoteResponse(BaseModel):
    symbol: str
    name: str
    price: float
    change: float
    change_percent: float
    volume: int
    day_high: Optional[float] = None
    day_low: Optional[float] = None
    previous_close: Optional[float] = None
    currency: Optional[str] = None
    exchange: Optional[str] = None
    last_updated: str


class SearchResult(BaseModel):
    symbol: str
    name: str
    exchange: str


class MarketOverviewResponse(BaseModel):
    indices: list[dict[str, Any]]
    top_gainers: list[QuoteResponse]
    top_losers: list[QuoteResponse]
    most_active: list[QuoteResponse]
    last_updated: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
