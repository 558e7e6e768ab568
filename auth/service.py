"""
auth/service.py -- Login, registration, logout and password changes.

Every method takes an explicit RequestContext (client IP, user agent, the
authenticated account if any, and its session id). Nothing here reads
request globals, so the service is usable from HTTP handlers, the CLI and
tests alike.

Expected failures come back as Outcome(failure=...). Only invariant
violations (DefaultRoleMissing) and database errors raise.

Audit: every login outcome is logged with email and IP. Passwords are never
logged.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError

from auth.lifecycle import EMAIL_PROVIDER, accepts_password_login, login_gate, needs_to_set_password
from auth.models import Account
from auth.results import DefaultRoleMissing, Failure, Outcome, fail, succeed
from auth.sessions import SessionGrant, SessionManager
from auth.store import AccountStore
from auth.tokens import authenticate, hash_password, verify_password
from core.config import Settings

logger = logging.getLogger("eventara.auth")

MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, and from where."""

    ip: str = "unknown"
    user_agent: str = ""
    account: Account | None = None
    session_id: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    def __init__(
        self,
        store: AccountStore,
        sessions: SessionManager,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, remember: bool, ctx: RequestContext) -> Outcome[SessionGrant]:
        """Check credentials, then account state, then open a session.

        State is only reported after the password matched, so a suspended or
        inactive response never confirms that an email exists to someone who
        does not know its password.
        """
        account = authenticate(self._store, email, password)
        if account is None or not accepts_password_login(account):
            logger.warning("Login failed (invalid credentials): email=%s ip=%s", email, ctx.ip)
            return fail(Failure.INVALID_CREDENTIALS, "The provided credentials are incorrect.")

        blocked = login_gate(account)
        if blocked is Failure.ACCOUNT_SUSPENDED:
            logger.warning("Login refused (suspended): account_id=%s email=%s ip=%s", account.id, email, ctx.ip)
            return fail(
                Failure.ACCOUNT_SUSPENDED,
                "Your account has been suspended. Please contact support for assistance.",
            )
        if blocked is Failure.ACCOUNT_INACTIVE:
            logger.info("Login refused (inactive): account_id=%s email=%s ip=%s", account.id, email, ctx.ip)
            return fail(
                Failure.ACCOUNT_INACTIVE,
                "Your account is inactive. Please reactivate your account to continue.",
                needs_reactivation=True,
                email=account.email,
                redirect_url="/reactivate",
            )

        grant = self.start_session(account, remember, ctx)
        logger.info("Login succeeded: account_id=%s email=%s ip=%s", account.id, email, ctx.ip)
        return succeed(grant, "Login successful.")

    def start_session(self, account: Account, remember: bool, ctx: RequestContext) -> SessionGrant:
        """Open a session and stamp last_login. Used by login, register, reactivation and OAuth."""
        now = self._clock()
        self._store.touch_last_login(account.id, now)
        account.last_login = now
        return self._sessions.open(account, remember=remember)

    def logout(self, ctx: RequestContext) -> Outcome[None]:
        if ctx.session_id is not None:
            self._sessions.close(ctx.session_id)
        if ctx.account is not None:
            logger.info("Logout: account_id=%s email=%s ip=%s", ctx.account.id, ctx.account.email, ctx.ip)
        return succeed(None, "Logged out successfully.")

    def current_account(self, ctx: RequestContext) -> Account | None:
        return ctx.account

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, ctx: RequestContext) -> Outcome[Account]:
        if not self._settings.self_registration_enabled:
            return fail(Failure.REGISTRATION_DISABLED, "Registration is currently disabled.")
        if len(password) < MIN_PASSWORD_LENGTH:
            return fail(
                Failure.WEAK_PASSWORD,
                f"The password must be at least {MIN_PASSWORD_LENGTH} characters.",
                field="password",
            )
        if self._store.get_by_email(email) is not None:
            return fail(Failure.EMAIL_TAKEN, "The email has already been taken.", field="email")

        role_id = self._store.get_role_id(self._settings.default_role)
        if role_id is None:
            raise DefaultRoleMissing(f"Default role {self._settings.default_role!r} is missing.")

        try:
            account_id = self._store.create_account(
                Account(
                    email=email,
                    hashed_password=hash_password(password),
                    role_id=role_id,
                    active=True,
                    suspended=False,
                    auth_provider=EMAIL_PROVIDER,
                    password_set_by_user=True,
                )
            )
        except IntegrityError:
            # A concurrent registration for the same email won.
            return fail(Failure.EMAIL_TAKEN, "The email has already been taken.", field="email")

        account = self._store.get_by_id(account_id)
        if account is None:
            raise RuntimeError(f"Account {account_id} not found after insert.")
        logger.info("Registered: account_id=%s email=%s ip=%s", account.id, email, ctx.ip)
        return succeed(account, "Registration successful.")

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(
        self,
        account: Account,
        current_password: str,
        new_password: str,
        ctx: RequestContext,
    ) -> Outcome[Account]:
        if not verify_password(current_password, account.hashed_password):
            logger.warning("Password change refused (wrong current password): account_id=%s ip=%s", account.id, ctx.ip)
            return fail(
                Failure.INVALID_CREDENTIALS,
                "The current password is incorrect.",
                field="current_password",
            )
        if len(new_password) < MIN_PASSWORD_LENGTH:
            return fail(
                Failure.WEAK_PASSWORD,
                f"The password must be at least {MIN_PASSWORD_LENGTH} characters.",
                field="password",
            )
        self._store.update_account(account.id, hashed_password=hash_password(new_password), password_set_by_user=True)
        logger.info("Password changed: account_id=%s email=%s ip=%s", account.id, account.email, ctx.ip)
        return succeed(self._store.get_by_id(account.id), "Password updated successfully.")

    def set_initial_password(self, account: Account, new_password: str, ctx: RequestContext) -> Outcome[Account]:
        """Give an OAuth-provisioned account its first real password."""
        if not needs_to_set_password(account):
            return fail(Failure.PASSWORD_ALREADY_SET, "A password has already been set for this account.")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            return fail(
                Failure.WEAK_PASSWORD,
                f"The password must be at least {MIN_PASSWORD_LENGTH} characters.",
                field="password",
            )
        self._store.update_account(account.id, hashed_password=hash_password(new_password), password_set_by_user=True)
        logger.info("Initial password set: account_id=%s email=%s ip=%s", account.id, account.email, ctx.ip)
        return succeed(self._store.get_by_id(account.id), "Password set successfully.")
