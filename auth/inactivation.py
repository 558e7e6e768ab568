"""
auth/inactivation.py -- Scheduled sweep that marks idle accounts inactive.

An account is a candidate when it is active, not suspended, and its last
activity (last_login, or created_at if it never logged in) is older than
INACTIVITY_THRESHOLD_MONTHS calendar months.

The sweep only flips active=False. It does not revoke sessions: a user who
is logged in keeps that session; the next login is what gets blocked.

Running it twice in a row is a no-op the second time: already-inactive
accounts are not candidates, and mark_inactive() skips them anyway.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from auth.lifecycle import inactivity_cutoff, last_activity, should_be_inactive
from auth.models import Account
from auth.store import AccountStore

logger = logging.getLogger("eventara.auth.inactivation")


@dataclass
class SweepReport:
    total_found: int = 0
    marked_inactive: int = 0
    dry_run: bool = False
    errors: list[dict] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InactivationSweep:
    def __init__(
        self,
        store: AccountStore,
        threshold_months: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self.threshold_months = threshold_months
        self._clock = clock

    def candidates(self) -> list[Account]:
        now = self._clock()
        return [a for a in self._store.list_accounts("active") if should_be_inactive(a, now, self.threshold_months)]

    def mark_inactive(self, account: Account) -> bool:
        """Flip one account to inactive. Returns False if it already was."""
        if not account.active:
            return False
        self._store.update_account(account.id, active=False)
        seen = last_activity(account)
        logger.info(
            "Account marked inactive by sweep: account_id=%s email=%s last_activity=%s threshold_months=%d",
            account.id,
            account.email,
            seen.isoformat() if seen else "never",
            self.threshold_months,
        )
        return True

    def run(self, dry_run: bool = False) -> SweepReport:
        found = self.candidates()
        report = SweepReport(total_found=len(found), dry_run=dry_run)
        if dry_run:
            return report

        for account in found:
            try:
                if self.mark_inactive(account):
                    report.marked_inactive += 1
            except Exception as exc:
                # One bad row must not abort the whole sweep.
                logger.exception("Failed to mark account inactive: account_id=%s email=%s", account.id, account.email)
                report.errors.append({"account_id": account.id, "email": account.email, "error": str(exc)})
        return report

    def stats(self) -> dict:
        counts = self._store.count_by_state()
        return {
            "total_users": counts["total"],
            "active_users": counts["active"],
            "inactive_users": counts["inactive"],
            "suspended_users": counts["suspended"],
            "users_should_be_inactive": len(self.candidates()),
            "threshold_date": inactivity_cutoff(self._clock(), self.threshold_months).date().isoformat(),
            "threshold_months": self.threshold_months,
        }
