"""
auth/results.py -- Typed outcomes returned across the service boundary.

Services return an Outcome instead of raising for every expected failure
(bad credentials, expired code, rate limit, ...). The Failure enum names the
kind; controllers map kinds to HTTP status codes in api/errors.py.

Exceptions remain for invariant violations only (DefaultRoleMissing, database
errors), which surface as a generic 500.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Failure(str, Enum):
    # Validation
    EMAIL_TAKEN = "email_taken"
    WEAK_PASSWORD = "weak_password"
    PASSWORD_ALREADY_SET = "password_already_set"
    REGISTRATION_DISABLED = "registration_disabled"

    # Authentication
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_OR_EXPIRED_CODE = "invalid_or_expired_code"
    INVALID_CODE = "invalid_code"
    CODE_EXPIRED = "code_expired"
    RATE_LIMITED = "rate_limited"

    # Authorization / account state
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_INACTIVE = "account_inactive"
    ALREADY_ACTIVE = "already_active"
    ALREADY_INACTIVE = "already_inactive"
    ALREADY_SUSPENDED = "already_suspended"
    NOT_SUSPENDED = "not_suspended"
    SUSPENDED_CANNOT_ACTIVATE = "suspended_cannot_activate"
    SELF_ACTION = "self_action"
    NOT_FOUND = "not_found"

    # Delivery / integration
    DELIVERY_FAILED = "delivery_failed"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value (ok) or a Failure with a user-safe message.

    context carries extra, user-safe data for the caller (e.g. the
    needs_reactivation hint on ACCOUNT_INACTIVE).
    """

    value: T | None = None
    failure: Failure | None = None
    message: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        if self.failure is not None or self.value is None:
            raise ValueError(f"unwrap() on failed outcome: {self.failure}")
        return self.value


def succeed(value: T, message: str = "") -> Outcome[T]:
    return Outcome(value=value, message=message)


def fail(failure: Failure, message: str, **context: Any) -> Outcome[Any]:
    return Outcome(failure=failure, message=message, context=context)


class DefaultRoleMissing(RuntimeError):
    """The default role row is absent. Account creation must abort."""
