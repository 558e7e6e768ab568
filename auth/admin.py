"""
auth/admin.py -- Administrative account state changes.

suspend / unsuspend / activate / deactivate, plus listing. Each returns an
Outcome; the admin routes in api/routes/v1/admin.py map failures to HTTP.

Rules:
  suspend     -- sets suspended=True and active=False, revokes every session.
  unsuspend   -- clears suspended and restores active=True.
  activate    -- refused while suspended (unsuspend first).
  deactivate  -- sets active=False and revokes every session.

An admin may not suspend or deactivate their own account.

Session revocation failures are logged and do not roll back the state
change: the account is already blocked from new logins, and resolve() in
auth/sessions.py rejects tokens for accounts that cannot log in.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.models import Account
from auth.results import Failure, Outcome, fail, succeed
from auth.sessions import SessionManager
from auth.store import AccountStore

logger = logging.getLogger("eventara.auth.admin")


class AccountAdminService:
    def __init__(self, store: AccountStore, sessions: SessionManager) -> None:
        self._store = store
        self._sessions = sessions

    def list_accounts(self, status: str | None = None) -> list[Account]:
        return self._store.list_accounts(status)

    def stats(self) -> dict[str, int]:
        return self._store.count_by_state()

    def _load(self, account_id: int) -> Outcome[Account]:
        account = self._store.get_by_id(account_id)
        if account is None:
            return fail(Failure.NOT_FOUND, "User not found.")
        return Outcome(value=account)

    def _revoke_sessions(self, account: Account) -> None:
        try:
            self._sessions.revoke_all(account.id)
        except Exception:
            logger.exception("Failed to invalidate sessions: account_id=%s email=%s", account.id, account.email)

    # ------------------------------------------------------------------
    # Suspension
    # ------------------------------------------------------------------

    def suspend(self, account_id: int, actor: Account, reason: str | None = None) -> Outcome[Account]:
        loaded = self._load(account_id)
        if not loaded.ok:
            return loaded
        account = loaded.value
        if account.id == actor.id:
            return fail(Failure.SELF_ACTION, "You cannot suspend your own account.")
        if account.suspended:
            return fail(Failure.ALREADY_SUSPENDED, "User account is already suspended.")

        self._store.update_account(account.id, suspended=True, active=False)
        self._revoke_sessions(account)
        logger.warning(
            "Account suspended: account_id=%s email=%s actor_id=%s reason=%r",
            account.id,
            account.email,
            actor.id,
            reason,
        )
        return succeed(self._store.get_by_id(account.id), "User account suspended successfully.")

    def unsuspend(self, account_id: int, actor: Account) -> Outcome[Account]:
        loaded = self._load(account_id)
        if not loaded.ok:
            return loaded
        account = loaded.value
        if not account.suspended:
            return fail(Failure.NOT_SUSPENDED, "User account is not suspended.")

        self._store.update_account(account.id, suspended=False, active=True)
        logger.info("Account unsuspended: account_id=%s email=%s actor_id=%s", account.id, account.email, actor.id)
        return succeed(self._store.get_by_id(account.id), "User account unsuspended successfully.")

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def activate(self, account_id: int, actor: Account) -> Outcome[Account]:
        loaded = self._load(account_id)
        if not loaded.ok:
            return loaded
        account = loaded.value
        if account.active:
            return fail(Failure.ALREADY_ACTIVE, "User account is already active.")
        if account.suspended:
            return fail(
                Failure.SUSPENDED_CANNOT_ACTIVATE,
                "Cannot activate a suspended account. Please unsuspend first.",
            )

        self._store.update_account(account.id, active=True)
        logger.info("Account activated: account_id=%s email=%s actor_id=%s", account.id, account.email, actor.id)
        return succeed(self._store.get_by_id(account.id), "User account activated successfully.")

    def deactivate(self, account_id: int, actor: Account) -> Outcome[Account]:
        loaded = self._load(account_id)
        if not loaded.ok:
            return loaded
        account = loaded.value
        if account.id == actor.id:
            return fail(Failure.SELF_ACTION, "You cannot deactivate your own account.")
        if not account.active:
            return fail(Failure.ALREADY_INACTIVE, "User account is already inactive.")

        self._store.update_account(account.id, active=False)
        self._revoke_sessions(account)
        logger.info("Account deactivated: account_id=%s email=%s actor_id=%s", account.id, account.email, actor.id)
        return succeed(self._store.get_by_id(account.id), "User account deactivated successfully.")
