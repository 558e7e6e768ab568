"""
api/routes/v1/auth.py -- Login, registration, logout and password endpoints.

Routes:
  POST /api/v1/auth/login                 -- password login; sets JWT cookie
  POST /api/v1/auth/register              -- create account; 201 + auto-login
  POST /api/v1/auth/logout                -- revoke session, clear cookie; 200
  GET  /api/v1/auth/check                 -- {authenticated, user?}
  POST /api/v1/auth/change-password       -- requires auth
  POST /api/v1/auth/set-initial-password  -- requires auth; OAuth accounts only

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] AuthService.login() runs bcrypt for unknown emails too -- never inline
       get_by_email() + verify_password() here.
  [M5] Cache-Control: no-store on every response that carries a token.
  A 403 for an inactive account is only returned after the password matched,
  and carries needs_reactivation so the client can route to /reactivate.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import failure_response
from api.limiter import limiter
from api.models import (
    AccountResponse,
    AccountSummary,
    AuthResponse,
    ChangePasswordRequest,
    CheckAuthResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    SetInitialPasswordRequest,
)
from auth.dependencies import get_current_account, get_request_context
from auth.models import Account
from auth.results import Failure
from auth.service import AuthService, RequestContext
from auth.sessions import SessionGrant
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings

# Auth policy:
# - POST /auth/login, /auth/register:   public
# - POST /auth/logout, GET /auth/check: public -- both are safe without a session
# - POST /auth/change-password:         requires auth (get_current_account)
# - POST /auth/set-initial-password:    requires auth (get_current_account)
router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def session_response(
    grant: SessionGrant,
    message: str,
    status_code: int = 200,
    redirect_url: str | None = None,
) -> JSONResponse:
    """JSON body + httpOnly cookie for a freshly opened session."""
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            message=message,
            user=AccountSummary.from_account(grant.account),
            access_token=grant.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=grant.max_age,
            redirect_url=redirect_url,
        ).model_dump(),
    )
    set_auth_cookie(resp, grant.token, grant.max_age)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_login_limit)  # [H2] inside @router so FastAPI registers the rate-limited wrapper
def login(
    request: Request,
    body: LoginRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    401 for unknown email or wrong password (same message for both),
    403 account_suspended, 403 account_inactive with needs_reactivation.
    """
    service: AuthService = request.app.state.auth_service
    outcome = service.login(body.email, body.password, body.remember, ctx)
    if not outcome.ok:
        return failure_response(outcome)
    return session_response(outcome.value, outcome.message, redirect_url="/dashboard")


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    """Create an email/password account and log it in."""
    service: AuthService = request.app.state.auth_service
    outcome = service.register(body.email, body.password, ctx)
    if not outcome.ok:
        return failure_response(outcome)
    grant = service.start_session(outcome.value, remember=False, ctx=ctx)
    return session_response(grant, outcome.message, status_code=201, redirect_url="/profile/setup")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, ctx: RequestContext = Depends(get_request_context)) -> JSONResponse:
    """Revoke the server-side session and clear the cookie.

    Also clears the Starlette session (which holds the OAuth state value) so
    nothing from this session carries into the next login.
    """
    service: AuthService = request.app.state.auth_service
    outcome = service.logout(ctx)
    request.session.clear()
    resp = JSONResponse(content=MessageResponse(message=outcome.message).model_dump())
    clear_auth_cookie(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/check", response_model=CheckAuthResponse)
def check_auth(request: Request, ctx: RequestContext = Depends(get_request_context)) -> CheckAuthResponse:
    service: AuthService = request.app.state.auth_service
    account = service.current_account(ctx)
    if account is None:
        return CheckAuthResponse(authenticated=False)
    return CheckAuthResponse(authenticated=True, user=AccountSummary.from_account(account))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=AccountResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    account: Account = Depends(get_current_account),
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    service: AuthService = request.app.state.auth_service
    outcome = service.change_password(account, body.current_password, body.password, ctx)
    if not outcome.ok:
        # A wrong current password is a form error here, not a failed login.
        status = 422 if outcome.failure is Failure.INVALID_CREDENTIALS else None
        return failure_response(outcome, status)
    return JSONResponse(
        content=AccountResponse(message=outcome.message, user=AccountSummary.from_account(outcome.value)).model_dump()
    )


@router.post("/auth/set-initial-password", response_model=AccountResponse)
def set_initial_password(
    request: Request,
    body: SetInitialPasswordRequest,
    account: Account = Depends(get_current_account),
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    service: AuthService = request.app.state.auth_service
    outcome = service.set_initial_password(account, body.password, ctx)
    if not outcome.ok:
        return failure_response(outcome)
    return JSONResponse(
        content=AccountResponse(message=outcome.message, user=AccountSummary.from_account(outcome.value)).model_dump()
    )
