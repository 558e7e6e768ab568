"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by login, register, reactivation and OAuth.
  2. Authorization: Bearer <token> header -- API clients using JWTs.

A token is accepted only when SessionManager.resolve() finds a live session
row for it and the account can still log in (not suspended, not inactive).

get_request_context() is the soft variant: it always returns a
RequestContext, with account=None when unauthenticated.
get_current_account() raises HTTP 401 if unauthenticated.
require_admin() raises HTTP 403 if the account's role is not "admin".

Layer rule: may import from fastapi (this module is part of the FastAPI
dependency injection system). No imports from api/.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import Account
from auth.service import RequestContext
from auth.sessions import SessionManager
from auth.tokens import COOKIE_NAME


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _bearer_or_cookie(request: Request) -> str | None:
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def get_request_context(request: Request) -> RequestContext:
    """Describe the caller. Never raises -- account is None when unauthenticated."""
    sessions: SessionManager = request.app.state.sessions
    account: Account | None = None
    sid: str | None = None

    token = _bearer_or_cookie(request)
    if token:
        resolved = sessions.resolve(token)
        if resolved is not None:
            account, sid = resolved

    return RequestContext(
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        account=account,
        session_id=sid,
    )


def get_current_account(ctx: RequestContext = Depends(get_request_context)) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    if ctx.account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return ctx.account


def require_admin(account: Account = Depends(get_current_account)) -> Account:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    if account.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return account
