"""
api/routes/v1/password_reset.py -- Password reset by emailed one-time code.

Routes:
  POST /api/v1/password-reset/send-code       -- email a code
  POST /api/v1/password-reset/reset-password  -- code + new password
  POST /api/v1/password-reset/status          -- remaining sends today

send-code and status answer the same way for unknown and known emails so the
endpoints cannot be used to discover which addresses have accounts. Rate
limiting (400) and delivery failure (500) are the only distinguishable
outcomes, and both only occur for real accounts after real sends.

A successful reset also revokes every existing session for the account:
whoever held the old password should not stay logged in.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import failure_response
from api.models import CodeStatusResponse, EmailRequest, MessageResponse, ResetPasswordRequest
from auth.codes import OneTimeCodeFlow
from auth.dependencies import get_request_context
from auth.results import Failure, fail
from auth.service import RequestContext
from auth.sessions import SessionManager
from auth.store import AccountStore

logger = logging.getLogger("eventara.api")

router = APIRouter()

_SENT_MESSAGE = "If an account exists for that email, a password reset code has been sent."


@router.post("/password-reset/send-code", response_model=MessageResponse)
def send_code(
    request: Request,
    body: EmailRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    store: AccountStore = request.app.state.store
    flow: OneTimeCodeFlow = request.app.state.reset_flow

    account = store.get_by_email(body.email)
    if account is None:
        logger.info("Password reset requested for unknown email=%s ip=%s", body.email, ctx.ip)
        return JSONResponse(content=MessageResponse(message=_SENT_MESSAGE).model_dump())

    outcome = flow.send_code(account)
    if not outcome.ok:
        return failure_response(outcome)
    return JSONResponse(content=MessageResponse(message=_SENT_MESSAGE).model_dump())


@router.post("/password-reset/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    store: AccountStore = request.app.state.store
    flow: OneTimeCodeFlow = request.app.state.reset_flow
    sessions: SessionManager = request.app.state.sessions

    account = store.get_by_email(body.email)
    if account is None:
        return failure_response(fail(Failure.INVALID_OR_EXPIRED_CODE, "Invalid or expired password reset code."))

    outcome = flow.verify_and_consume(account, body.code, new_password=body.password)
    if not outcome.ok:
        return failure_response(outcome)

    try:
        sessions.revoke_all(account.id)
    except Exception:
        # The new password is already stored; a cleanup failure is logged only.
        logger.exception("Failed to invalidate sessions: account_id=%s email=%s", account.id, account.email)
    logger.info("Password reset: account_id=%s email=%s ip=%s", account.id, account.email, ctx.ip)
    return JSONResponse(content=MessageResponse(message=outcome.message).model_dump())


@router.post("/password-reset/status", response_model=CodeStatusResponse)
def status(request: Request, body: EmailRequest) -> CodeStatusResponse:
    store: AccountStore = request.app.state.store
    flow: OneTimeCodeFlow = request.app.state.reset_flow

    limit = flow.limiter.limit
    account = store.get_by_email(body.email)
    remaining = flow.remaining_attempts(account) if account is not None else limit
    return CodeStatusResponse(remaining_attempts=remaining, max_attempts=limit, can_request_code=remaining > 0)
