"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). State-machine rules
over these shapes live in auth/lifecycle.py; persistence lives in
auth/store.py.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Account:
    """The authenticatable identity record.

    role is the role *name* ("user", "volunteer", "admin") or None when the
    role row has been removed; callers must handle the None case explicitly.

    hashed_password is never None. OAuth-provisioned accounts carry a hash of
    a random placeholder the user never sees; password_set_by_user=False marks
    that state and blocks password login until a real password is set.
    """

    email: str
    hashed_password: str
    id: int | None = None
    role: str | None = None
    role_id: int | None = None
    active: bool = True
    suspended: bool = False
    auth_provider: str | None = None  # "email", "google"
    password_set_by_user: bool = False
    email_verified_at: datetime | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class EmailNotifications:
    event_updates: bool = True
    volunteer_opportunities: bool = True
    newsletter: bool = False
    account_security: bool = True
    marketing: bool = False


@dataclass
class Preferences:
    darkmode: bool = False
    email_notifications: EmailNotifications = field(default_factory=EmailNotifications)


@dataclass
class Profile:
    """User-facing display record, 1:1 with Account.

    A Profile is never required for authentication. Accounts created through
    the email flow have none until profile setup runs.
    """

    account_id: int
    alias: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    image_url: str | None = None
    banner_url: str | None = None
    bio: str | None = None
    preferences: Preferences = field(default_factory=Preferences)
    created_at: datetime | None = None


@dataclass
class SessionRecord:
    """A server-side session row. The signed cookie carries only sid."""

    sid: str
    account_id: int
    expires_at: datetime
    created_at: datetime | None = None
