"""
auth/sessions.py -- Server-side sessions named by the JWT cookie.

Opening a session writes a row to the sessions table and signs a JWT that
carries its sid. resolve() accepts a token only if the signature verifies
AND the sid still names a live, unexpired row AND the account may log in.
Deleting rows (logout, suspend) therefore revokes tokens before their exp.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from auth.lifecycle import can_login
from auth.models import Account, SessionRecord
from auth.store import AccountStore
from auth.tokens import create_access_token, decode_access_token
from core.config import Settings

logger = logging.getLogger("eventara.auth.sessions")


@dataclass(frozen=True)
class SessionGrant:
    account: Account
    token: str
    max_age: int
    sid: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    def __init__(
        self,
        store: AccountStore,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    def open(self, account: Account, remember: bool = False) -> SessionGrant:
        max_age = self._settings.remember_me_seconds if remember else self._settings.token_expire_seconds
        now = self._clock()
        sid = secrets.token_urlsafe(32)
        self._store.create_session(
            SessionRecord(sid=sid, account_id=account.id, created_at=now, expires_at=now + timedelta(seconds=max_age))
        )
        token = create_access_token(account.id, account.email, account.role, sid, expire_seconds=max_age)
        return SessionGrant(account=account, token=token, max_age=max_age, sid=sid)

    def close(self, sid: str) -> bool:
        return self._store.delete_session(sid)

    def revoke_all(self, account_id: int) -> int:
        removed = self._store.delete_sessions_for(account_id)
        logger.info("Revoked %d session(s) for account %s", removed, account_id)
        return removed

    def resolve(self, token: str) -> tuple[Account, str] | None:
        """Return (account, sid) for a valid token, or None."""
        payload = decode_access_token(token)
        if payload is None:
            return None
        record = self._store.get_session(payload["sid"])
        if record is None or record.account_id != payload["account_id"]:
            return None
        if record.expires_at <= self._clock():
            self._store.delete_session(record.sid)
            return None
        account = self._store.get_by_id(record.account_id)
        if account is None or not can_login(account):
            return None
        return account, record.sid
