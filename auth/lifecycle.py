"""
auth/lifecycle.py -- Account state machine rules.

Two independent axes gate login:

  suspended | active | outcome
  ----------+--------+------------------------------------------------
  true      |   any  | ACCOUNT_SUSPENDED (admin-only recovery)
  false     |  true  | credentials checked normally
  false     |  false | ACCOUNT_INACTIVE (self-service reactivation)

These are pure functions over auth.models.Account. Persistence of the
resulting transitions is done by the services through AccountStore.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import calendar
from datetime import datetime

from auth.models import Account
from auth.results import Failure

EMAIL_PROVIDER = "email"
GOOGLE_PROVIDER = "google"


def login_gate(account: Account) -> Failure | None:
    """Return the Failure that blocks login for this account, or None.

    Suspension is checked first: a suspended account reports suspension even
    when it is also inactive.
    """
    if account.suspended:
        return Failure.ACCOUNT_SUSPENDED
    if not account.active:
        return Failure.ACCOUNT_INACTIVE
    return None


def can_login(account: Account) -> bool:
    return account.active and not account.suspended


def needs_to_set_password(account: Account) -> bool:
    """True for OAuth-provisioned accounts still holding a placeholder password."""
    return (
        account.auth_provider is not None
        and account.auth_provider != EMAIL_PROVIDER
        and not account.password_set_by_user
    )


def accepts_password_login(account: Account) -> bool:
    return not needs_to_set_password(account)


def inactivity_cutoff(now: datetime, months: int) -> datetime:
    """Return now minus `months` calendar months, clamping the day to month end.

    2026-05-31 minus 3 months is 2026-02-28, not an invalid date.
    """
    month_index = now.month - 1 - months
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def last_activity(account: Account) -> datetime | None:
    return account.last_login or account.created_at


def should_be_inactive(account: Account, now: datetime, months: int = 3) -> bool:
    """True if an active, unsuspended account has been idle past the threshold."""
    if not account.active or account.suspended:
        return False
    seen = last_activity(account)
    if seen is None:
        return False
    return seen < inactivity_cutoff(now, months)
