"""
auth/linking.py -- Reconcile an external (Google) identity with a local account.

Flow:
  1. Look up the account by the provider-verified email.
  2. Exists: refuse if it cannot log in (suspended or inactive). OAuth never
     starts the reactivation flow on its own.
  3. Missing: provision account + profile in one transaction
     (AccountStore.provision_oauth_account). Under concurrent duplicate
     callbacks the loser gets the winner's row back, not an error.
  4. Open a session for the found-or-created account.

New accounts get a random placeholder password the user never sees and
password_set_by_user=False, which blocks password login until
set-initial-password runs. Provider-verified emails are trusted, so
email_verified_at is stamped at creation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from auth.lifecycle import GOOGLE_PROVIDER, login_gate
from auth.models import Account, Profile
from auth.oauth import ExternalIdentity
from auth.results import Failure, Outcome, fail, succeed
from auth.service import AuthService, RequestContext
from auth.sessions import SessionGrant
from auth.store import AccountStore
from auth.tokens import generate_placeholder_password, hash_password

logger = logging.getLogger("eventara.auth.oauth")

_MIN_ALIAS = 3
# Leaves room under the 50-char column for a numeric de-duplication suffix.
_MAX_ALIAS = 40
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class LinkResult:
    account: Account
    created: bool
    grant: SessionGrant


def derive_alias(email: str, now: datetime | None = None) -> str:
    """Base alias from the email local part: alphanumerics only, lowercased.

    Too-short results are padded with a Unix timestamp so the base is never
    empty. The store appends 1, 2, ... if the base is already taken.
    """
    local = email.split("@", 1)[0]
    alias = _NON_ALNUM.sub("", local).lower()
    if len(alias) < _MIN_ALIAS:
        stamp = int((now or datetime.now(timezone.utc)).timestamp())
        alias = f"{alias or 'user'}{stamp}"
    return alias[:_MAX_ALIAS]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthLinker:
    def __init__(
        self,
        store: AccountStore,
        auth: AuthService,
        default_role: str = "user",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._auth = auth
        self._default_role = default_role
        self._clock = clock

    def link(self, identity: ExternalIdentity, ctx: RequestContext) -> Outcome[LinkResult]:
        """Find or create the local account for identity and log it in.

        Raises DefaultRoleMissing (via the store) if the default role row is
        gone; the callback route turns that into a generic failure redirect.
        """
        existing = self._store.get_by_email(identity.email)
        if existing is not None:
            account, created = existing, False
        else:
            now = self._clock()
            account, created = self._store.provision_oauth_account(
                Account(
                    email=identity.email,
                    hashed_password=hash_password(generate_placeholder_password()),
                    active=True,
                    suspended=False,
                    auth_provider=GOOGLE_PROVIDER,
                    password_set_by_user=False,
                    email_verified_at=now,
                ),
                Profile(
                    account_id=0,
                    alias=derive_alias(identity.email, now),
                    first_name=identity.given_name or "",
                    last_name=identity.family_name or "",
                    image_url=identity.avatar,
                    bio="",
                ),
                role_name=self._default_role,
            )

        blocked = login_gate(account)
        if blocked is not None:
            logger.warning(
                "OAuth login refused (%s): account_id=%s email=%s ip=%s",
                blocked.value,
                account.id,
                account.email,
                ctx.ip,
            )
            return fail(blocked, "Your account is suspended or inactive.")

        grant = self._auth.start_session(account, remember=False, ctx=ctx)
        logger.info(
            "OAuth login succeeded: account_id=%s email=%s created=%s ip=%s",
            account.id,
            account.email,
            created,
            ctx.ip,
        )
        return succeed(LinkResult(account=account, created=created, grant=grant))
