"""
API request and response models for Eventara auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from auth.lifecycle import needs_to_set_password
from auth.models import Account

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Mail
# delivery is the real verification.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt refuses input over 72 bytes. The Field cap counts characters, so new
# passwords are also checked by encoded length in _NewPassword.
PASSWORD_MAX = 72


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Auth requests
# ---------------------------------------------------------------------------


class _NewPassword(BaseModel):
    """password + password_confirmation, which must match.

    Minimum length is enforced by the services so the rule lives in one
    place; only the bcrypt ceiling (72 UTF-8 bytes) is checked here.
    """

    password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    password_confirmation: str = Field(max_length=PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > PASSWORD_MAX:
            raise ValueError(f"The password may not be greater than {PASSWORD_MAX} bytes.")
        return value

    @field_validator("password_confirmation")
    @classmethod
    def confirmation_matches(cls, value: str, info: ValidationInfo) -> str:
        if "password" in info.data and value != info.data["password"]:
            raise ValueError("The password confirmation does not match.")
        return value


class LoginRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    remember: bool = False


class RegisterRequest(_NewPassword):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ChangePasswordRequest(_NewPassword):
    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class SetInitialPasswordRequest(_NewPassword):
    pass


# ---------------------------------------------------------------------------
# One-time code requests
# ---------------------------------------------------------------------------


class EmailRequest(BaseModel):
    """Body for send-code and status endpoints."""

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ResetPasswordRequest(_NewPassword):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    code: str = Field(min_length=1, max_length=16)


class VerifyCodeRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    code: str = Field(min_length=1, max_length=16)


# ---------------------------------------------------------------------------
# Admin requests
# ---------------------------------------------------------------------------


class SuspendRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class SweepRequest(BaseModel):
    dry_run: bool = False


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class AccountSummary(BaseModel):
    """Public view of an Account. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: Optional[str] = None
    active: bool
    suspended: bool
    auth_provider: Optional[str] = None
    needs_password: bool = False
    email_verified: bool = False
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountSummary":
        return cls(
            id=account.id,
            email=account.email,
            role=account.role,
            active=account.active,
            suspended=account.suspended,
            auth_provider=account.auth_provider,
            needs_password=needs_to_set_password(account),
            email_verified=account.email_verified_at is not None,
            last_login=_iso(account.last_login),
            created_at=_iso(account.created_at),
        )


class AuthResponse(BaseModel):
    """Returned by login, register and reactivation verify -- all open a session."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: AccountSummary
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    redirect_url: Optional[str] = None


class CheckAuthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[AccountSummary] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: AccountSummary


class CodeSentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    expires_at: str
    remaining_attempts: int


class CodeStatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    remaining_attempts: int
    max_attempts: int
    can_request_code: bool
    active: Optional[bool] = None
    suspended: Optional[bool] = None


class AccountListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[AccountSummary]
    total: int
    counts: dict[str, int]


class SweepResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_found: int
    marked_inactive: int
    dry_run: bool
    errors: list[dict[str, Any]] = []


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    errors maps a request field to its messages (validation failures).
    context carries extra user-safe hints, e.g. needs_reactivation.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    errors: Optional[dict[str, list[str]]] = None
    context: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
