"""
auth/codes.py -- One-time emailed codes for password reset and reactivation.

Both flows share one algorithm and differ only in the effect applied when a
code is accepted:

  reset       -- set a new password (min 8 chars) and force active=True
  reactivate  -- set active=True

Each OneTimeCodeFlow instance is bound to one CodePurpose. The HTTP layer
keeps two instances on app.state.

Security design:
  Codes are 6 characters from a 32-character alphabet without the
  look-alikes 0/O/1/I, drawn with secrets.choice (CSPRNG). A code grants
  account control, so random.choice is never acceptable here.

  At most one live code exists per (account, purpose): issuing a new code
  overwrites the previous CodeKey entry.

  The per-day attempt counter is incremented before the mail is sent, so a
  failing mailer still consumes an attempt. That keeps the limit meaningful
  as mailer-abuse protection.

  The correct code is never logged. A wrong attempt is logged together with
  the attempted value for abuse monitoring.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from auth.mailer import CodeMessage, Mailer
from auth.models import Account
from auth.ratelimit import DailyAttemptLimiter
from auth.results import Failure, Outcome, fail, succeed
from auth.store import AccountStore
from auth.tokens import hash_password
from cache.store import KeyedCache

logger = logging.getLogger("eventara.auth.codes")

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MIN_PASSWORD_LENGTH = 8

# The cache entry outlives the code by this margin so that a late attempt is
# reported as "expired" by the explicit check rather than as "missing".
_EXPIRY_GRACE_SECONDS = 5 * 60


class CodePurpose(str, Enum):
    RESET = "reset"
    REACTIVATE = "reactivate"


_LABELS = {
    CodePurpose.RESET: "password reset",
    CodePurpose.REACTIVATE: "reactivation",
}


@dataclass(frozen=True)
class CodeKey:
    account_id: int
    purpose: str

    def render(self) -> str:
        return f"otc:{self.purpose}:{self.account_id}"


@dataclass(frozen=True)
class CodeIssued:
    expires_at: datetime
    remaining_attempts: int


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _human(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%b %d, %Y at %I:%M %p UTC")


class OneTimeCodeFlow:
    """Issue and redeem one-time codes for a single purpose.

    Usage:
        reset = OneTimeCodeFlow(CodePurpose.RESET, store, cache, mailer)
        issued = reset.send_code(account)
        outcome = reset.verify_and_consume(account, "ABC234", new_password="s3cret-pass")
    """

    def __init__(
        self,
        purpose: CodePurpose,
        store: AccountStore,
        cache: KeyedCache,
        mailer: Mailer,
        ttl_minutes: int = 30,
        max_sends_per_day: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.purpose = purpose
        self.ttl = timedelta(minutes=ttl_minutes)
        self._store = store
        self._cache = cache
        self._mailer = mailer
        self._clock = clock
        self.limiter = DailyAttemptLimiter(cache, purpose.value, max_sends_per_day, clock=clock)

    @property
    def label(self) -> str:
        return _LABELS[self.purpose]

    def key_for(self, account: Account) -> CodeKey:
        return CodeKey(account_id=account.id, purpose=self.purpose.value)

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def precheck(self, account: Account) -> Outcome | None:
        """Return a failed Outcome if this account may not use the flow, else None.

        Reactivation is only for accounts that are inactive and not
        suspended. Password reset is open to every existing account.
        """
        if self.purpose is not CodePurpose.REACTIVATE:
            return None
        if account.suspended:
            return fail(Failure.ACCOUNT_SUSPENDED, "Your account is suspended. Please contact support.")
        if account.active:
            return fail(Failure.ALREADY_ACTIVE, "Your account is already active.")
        return None

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def send_code(self, account: Account) -> Outcome[CodeIssued]:
        if not self.limiter.can_attempt(account.id):
            logger.warning(
                "%s code rate limit reached: account_id=%s email=%s",
                self.label,
                account.id,
                account.email,
            )
            return fail(Failure.RATE_LIMITED, f"Too many {self.label} attempts. Please try again later.")

        code = generate_code()
        now = self._clock()
        expires_at = now + self.ttl
        self._cache.set(
            self.key_for(account).render(),
            {
                "code": code,
                "account_id": account.id,
                "created_at": now.isoformat(),
                "expires_at": expires_at.isoformat(),
            },
            ttl=int(self.ttl.total_seconds()) + _EXPIRY_GRACE_SECONDS,
        )
        self.limiter.record(account.id)

        try:
            self._mailer.send_code(
                CodeMessage(to=account.email, purpose=self.purpose.value, code=code, expires=_human(expires_at))
            )
        except Exception:
            logger.exception(
                "Failed to send %s email: account_id=%s email=%s", self.label, account.id, account.email
            )
            return fail(Failure.DELIVERY_FAILED, f"Failed to send {self.label} email. Please try again.")

        logger.info(
            "%s code sent: account_id=%s email=%s expires_at=%s",
            self.label,
            account.id,
            account.email,
            expires_at.isoformat(),
        )
        return succeed(
            CodeIssued(expires_at=expires_at, remaining_attempts=self.limiter.remaining(account.id)),
            f"{self.label.capitalize()} code sent to your email address.",
        )

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    def verify_and_consume(
        self,
        account: Account,
        supplied_code: str,
        new_password: str | None = None,
    ) -> Outcome[Account]:
        key = self.key_for(account).render()
        record = self._cache.get(key)
        if not record:
            return fail(Failure.INVALID_OR_EXPIRED_CODE, f"Invalid or expired {self.label} code.")

        attempted = (supplied_code or "").strip().upper()
        if not hmac.compare_digest(record["code"].encode("utf-8"), attempted.encode("utf-8")):
            logger.warning(
                "Invalid %s code attempt: account_id=%s email=%s attempted_code=%r",
                self.label,
                account.id,
                account.email,
                supplied_code,
            )
            return fail(Failure.INVALID_CODE, f"Invalid {self.label} code.")

        if self._clock() > datetime.fromisoformat(record["expires_at"]):
            self._cache.delete(key)
            return fail(Failure.CODE_EXPIRED, f"{self.label.capitalize()} code has expired. Please request a new one.")

        if self.purpose is CodePurpose.RESET:
            if new_password is None or len(new_password) < MIN_PASSWORD_LENGTH:
                return fail(
                    Failure.WEAK_PASSWORD,
                    f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.",
                    field="password",
                )
            self._store.update_account(
                account.id,
                hashed_password=hash_password(new_password),
                password_set_by_user=True,
                active=True,
            )
            message = "Your password has been reset successfully!"
        else:
            self._store.update_account(account.id, active=True)
            message = "Your account has been reactivated successfully!"

        self._cache.delete(key)
        self.limiter.clear(account.id)

        updated = self._store.get_by_id(account.id)
        if updated is None:
            raise RuntimeError(f"Account {account.id} vanished during {self.label}.")
        logger.info("%s completed: account_id=%s email=%s", self.label, account.id, account.email)
        return succeed(updated, message)

    def remaining_attempts(self, account: Account) -> int:
        return self.limiter.remaining(account.id)
