"""
api/routes/v1/reactivation.py -- Self-service reactivation of inactive accounts.

Routes:
  POST /api/v1/reactivation/send-code    -- email a code (inactive, unsuspended only)
  POST /api/v1/reactivation/verify-code  -- code -> active=True + new session
  POST /api/v1/reactivation/status       -- account state and remaining sends

Unlike password reset, these endpoints confirm whether an email exists
(422 for unknown emails): the login endpoint already revealed the inactive
state to a caller who knew the password, and the flow is useless otherwise.

Suspended accounts get 400 here, not 403: suspension is recoverable only by
an administrator, and this endpoint simply does not apply to them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import failure_response, unknown_email_response
from api.models import AuthResponse, CodeSentResponse, CodeStatusResponse, EmailRequest, VerifyCodeRequest
from api.routes.v1.auth import session_response
from auth.codes import OneTimeCodeFlow
from auth.dependencies import get_request_context
from auth.service import AuthService, RequestContext
from auth.store import AccountStore

router = APIRouter()

# Precondition failures from OneTimeCodeFlow.precheck() are all 400 here.
_PRECHECK_STATUS = 400


@router.post("/reactivation/send-code", response_model=CodeSentResponse)
def send_code(request: Request, body: EmailRequest) -> JSONResponse:
    store: AccountStore = request.app.state.store
    flow: OneTimeCodeFlow = request.app.state.reactivation_flow

    account = store.get_by_email(body.email)
    if account is None:
        return unknown_email_response()

    blocked = flow.precheck(account)
    if blocked is not None:
        return failure_response(blocked, _PRECHECK_STATUS)

    outcome = flow.send_code(account)
    if not outcome.ok:
        return failure_response(outcome)
    issued = outcome.value
    return JSONResponse(
        content=CodeSentResponse(
            message=outcome.message,
            expires_at=issued.expires_at.isoformat(),
            remaining_attempts=issued.remaining_attempts,
        ).model_dump()
    )


@router.post("/reactivation/verify-code", response_model=AuthResponse)
def verify_code(
    request: Request,
    body: VerifyCodeRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    store: AccountStore = request.app.state.store
    flow: OneTimeCodeFlow = request.app.state.reactivation_flow
    service: AuthService = request.app.state.auth_service

    account = store.get_by_email(body.email)
    if account is None:
        return unknown_email_response()

    blocked = flow.precheck(account)
    if blocked is not None:
        return failure_response(blocked, _PRECHECK_STATUS)

    outcome = flow.verify_and_consume(account, body.code)
    if not outcome.ok:
        return failure_response(outcome)

    grant = service.start_session(outcome.value, remember=False, ctx=ctx)
    return session_response(grant, outcome.message, redirect_url="/dashboard")


@router.post("/reactivation/status", response_model=CodeStatusResponse)
def status(request: Request, body: EmailRequest) -> JSONResponse:
    store: AccountStore = request.app.state.store
    flow: OneTimeCodeFlow = request.app.state.reactivation_flow

    account = store.get_by_email(body.email)
    if account is None:
        return unknown_email_response()

    remaining = flow.remaining_attempts(account)
    eligible = flow.precheck(account) is None
    return JSONResponse(
        content=CodeStatusResponse(
            remaining_attempts=remaining,
            max_attempts=flow.limiter.limit,
            can_request_code=eligible and remaining > 0,
            active=account.active,
            suspended=account.suspended,
        ).model_dump()
    )
