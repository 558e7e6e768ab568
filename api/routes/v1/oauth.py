"""
api/routes/v1/oauth.py -- Google sign-in (authorization code flow).

Routes:
  GET /api/v1/oauth/google/redirect  -- 302 to Google
  GET /api/v1/oauth/google/callback  -- 302 /dashboard?login=success on success

Every failure redirects to /login?error=<key>, where key is one of a fixed
set the frontend maps to its own message. Provider and database error text
never reaches the browser; the detail goes to server logs only.

  oauth_unavailable   -- Google is not configured
  oauth_cancelled     -- provider returned ?error= (user declined, etc.)
  invalid_request     -- neither code nor error present
  oauth_failed        -- token exchange, identity or provisioning failure
  account_unavailable -- existing account is suspended or inactive

An inactive account is NOT reactivated here; the user must go through the
reactivation flow explicitly.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from auth.dependencies import get_request_context
from auth.linking import OAuthLinker
from auth.oauth import GOOGLE, extract_google_identity
from auth.results import DefaultRoleMissing
from auth.service import RequestContext
from auth.tokens import set_auth_cookie

logger = logging.getLogger("eventara.auth.oauth")

router = APIRouter()

SUCCESS_URL = "/dashboard?login=success"


def _to_login(error: str) -> RedirectResponse:
    return RedirectResponse(f"/login?error={error}", status_code=302)


@router.get("/oauth/google/redirect")
async def google_redirect(request: Request) -> RedirectResponse:
    """Redirect the browser to Google's authorization page.

    authlib stores the state value in the Starlette session before
    redirecting; the callback verifies it.
    """
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        return _to_login("oauth_unavailable")

    redirect_uri = str(request.url_for("google_callback"))
    try:
        return await client.authorize_redirect(request, redirect_uri)
    except Exception:
        logger.exception("Failed to start Google OAuth redirect")
        return _to_login("oauth_failed")


@router.get("/oauth/google/callback", name="google_callback")
async def google_callback(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
) -> RedirectResponse:
    """Exchange the code, link or create the account, open a session."""
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        return _to_login("oauth_unavailable")

    provider_error = request.query_params.get("error")
    if provider_error:
        logger.info("Google OAuth returned error=%r ip=%s", provider_error, ctx.ip)
        return _to_login("oauth_cancelled")
    if not request.query_params.get("code"):
        logger.warning("Google OAuth callback without code or error: ip=%s", ctx.ip)
        return _to_login("invalid_request")

    # Step 1: exchange code for token (state is verified by authlib)
    try:
        token = await client.authorize_access_token(request)
    except Exception:
        logger.exception("Google OAuth token exchange failed: ip=%s", ctx.ip)
        return _to_login("oauth_failed")

    # Step 2: verified identity [H1]
    try:
        identity = extract_google_identity(token)
    except ValueError:
        logger.warning("Google OAuth login rejected: unverified or missing email, ip=%s", ctx.ip)
        return _to_login("oauth_failed")

    # Step 3: find or create, then gate on account state
    linker: OAuthLinker = request.app.state.linker
    try:
        outcome = linker.link(identity, ctx)
    except (DefaultRoleMissing, SQLAlchemyError):
        logger.exception("Google OAuth account provisioning failed: email=%s ip=%s", identity.email, ctx.ip)
        return _to_login("oauth_failed")

    if not outcome.ok:
        return _to_login("account_unavailable")

    # Step 4: session cookie + redirect
    grant = outcome.value.grant
    resp = RedirectResponse(SUCCESS_URL, status_code=302)
    set_auth_cookie(resp, grant.token, grant.max_age)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
