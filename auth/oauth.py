"""
auth/oauth.py -- Authlib registry and identity extraction for Google sign-in.

Reads configuration from core.config.get_settings() at module load. Google is
registered only when both client ID and secret are configured; when it is
not, oauth.create_client("google") returns None and the routes redirect to
/login?error=oauth_unavailable.

Security notes:
  [H1] Email verification is mandatory. extract_google_identity() raises
       ValueError if the provider does not confirm the email is verified.
       Accounts are matched by email, so an unverified address could hand
       an attacker someone else's account.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

  The token exchange runs through authlib's httpx client with a bounded
  timeout (OAUTH_TIMEOUT_SECONDS) so a slow provider cannot pin a worker.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("eventara.auth.oauth")

GOOGLE = "google"

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_enabled:
    oauth.register(
        name=GOOGLE,
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile", "timeout": _cfg.oauth_timeout_seconds},
    )
    logger.info("Google OAuth provider registered")


# ---------------------------------------------------------------------------
# Identity extraction [H1]
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExternalIdentity:
    """The slice of a provider profile the linking flow needs."""

    email: str
    subject: str
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    avatar: str | None = None


def extract_google_identity(token: dict) -> ExternalIdentity:
    """Build an ExternalIdentity from the id_token claims authlib parsed.

    Raises:
        ValueError: no userinfo, unverified email, or missing email / sub.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return ExternalIdentity(
        email=email,
        subject=str(subject),
        name=userinfo.get("name"),
        given_name=userinfo.get("given_name"),
        family_name=userinfo.get("family_name"),
        avatar=userinfo.get("picture"),
    )
