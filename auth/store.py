"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_profile / _row_to_session are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(accounts.email) and UNIQUE(profiles.alias) are the real uniqueness
  guarantees. Pre-insert existence checks only produce friendlier errors;
  callers must still handle IntegrityError from a concurrent insert.

Tables:
  roles     -- seeded with user / volunteer / admin
  accounts  -- credentials and state flags
  profiles  -- 1:1 with accounts, preferences as a JSON text column
  sessions  -- server-side session rows; deleting a row logs that session out

Timestamps are stored as ISO 8601 text (UTC) and mapped to aware datetimes.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Account, EmailNotifications, Preferences, Profile, SessionRecord
from auth.results import DefaultRoleMissing

logger = logging.getLogger("eventara.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'eventara_auth.db'}"

DEFAULT_ROLES: tuple[str, ...] = ("user", "volunteer", "admin")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role_id", Integer),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("suspended", Integer, nullable=False, server_default="0"),
    Column("auth_provider", String(30)),  # "email", "google"
    Column("password_set_by_user", Integer, nullable=False, server_default="0"),
    Column("email_verified_at", String(32)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_profiles = Table(
    "profiles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, unique=True),
    Column("alias", String(50), nullable=False, unique=True),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("image_url", String(500)),
    Column("banner_url", String(500)),
    Column("bio", Text),
    Column("preferences", Text),  # JSON blob
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sid", String(64), nullable=False, unique=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

# Fields update_account() accepts. Anything else is a programming error.
_MUTABLE_FIELDS: frozenset[str] = frozenset(
    {
        "hashed_password",
        "role_id",
        "active",
        "suspended",
        "auth_provider",
        "password_set_by_user",
        "email_verified_at",
        "last_login",
    }
)
_BOOL_FIELDS: frozenset[str] = frozenset({"active", "suspended", "password_set_by_user"})
_DATETIME_FIELDS: frozenset[str] = frozenset({"email_verified_at", "last_login"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _account_select():
    """SELECT accounts.* plus the role name via LEFT OUTER JOIN roles."""
    return select(_accounts, _roles.c.name.label("role_name")).select_from(
        _accounts.outerjoin(_roles, _accounts.c.role_id == _roles.c.id)
    )


def _unique_alias(conn, base: str) -> str:
    """Return base, or base1, base2, ... -- the first alias not yet taken."""
    alias = base
    suffix = 1
    while conn.execute(select(_profiles.c.id).where(_profiles.c.alias == alias)).first() is not None:
        alias = f"{base}{suffix}"
        suffix += 1
    return alias


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, Profile, Role and Session rows.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(email="a@example.com", hashed_password=h, role_id=rid))
        account = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, seed_roles: bool = True) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        if seed_roles:
            self.ensure_roles(DEFAULT_ROLES)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def ensure_roles(self, names: tuple[str, ...]) -> None:
        """Insert any missing role rows. Idempotent -- safe on every startup."""
        with self.engine.begin() as conn:
            existing = {row.name for row in conn.execute(select(_roles.c.name))}
            for name in names:
                if name not in existing:
                    conn.execute(_roles.insert().values(name=name))

    def get_role_id(self, name: str) -> int | None:
        with self.engine.connect() as conn:
            return conn.execute(select(_roles.c.id).where(_roles.c.name == name)).scalar()

    def ping(self) -> bool:
        """Connectivity check for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers should treat that as a concurrent registration winning the race.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=account.email,
                    hashed_password=account.hashed_password,
                    role_id=account.role_id,
                    active=1 if account.active else 0,
                    suspended=1 if account.suspended else 0,
                    auth_provider=account.auth_provider,
                    password_set_by_user=1 if account.password_set_by_user else 0,
                    email_verified_at=_iso(account.email_verified_at),
                    last_login=_iso(account.last_login),
                    created_at=_iso(account.created_at) or now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email (case-sensitive, as stored)."""
        with self.engine.connect() as conn:
            row = conn.execute(_account_select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_account_select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self, status: str | None = None) -> list[Account]:
        """Return accounts ordered by id, optionally filtered by state.

        status: "active" (active and not suspended), "inactive" (not active,
        not suspended), "suspended", or None for all.
        """
        query = _account_select()
        if status == "active":
            query = query.where((_accounts.c.active == 1) & (_accounts.c.suspended == 0))
        elif status == "inactive":
            query = query.where((_accounts.c.active == 0) & (_accounts.c.suspended == 0))
        elif status == "suspended":
            query = query.where(_accounts.c.suspended == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_accounts.c.id)).fetchall()
        return [_row_to_account(r) for r in rows]

    def count_by_state(self) -> dict[str, int]:
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_accounts)).scalar() or 0
            active = (
                conn.execute(select(func.count()).select_from(_accounts).where(_accounts.c.active == 1)).scalar()
                or 0
            )
            suspended = (
                conn.execute(select(func.count()).select_from(_accounts).where(_accounts.c.suspended == 1)).scalar()
                or 0
            )
            inactive = (
                conn.execute(
                    select(func.count())
                    .select_from(_accounts)
                    .where((_accounts.c.active == 0) & (_accounts.c.suspended == 0))
                ).scalar()
                or 0
            )
        return {"total": total, "active": active, "inactive": inactive, "suspended": suspended}

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an existing account.

        Booleans are stored as 0/1 and datetimes as ISO text; pass Python
        values. Unknown field names raise ValueError.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        values: dict = {}
        for key, value in fields.items():
            if key in _BOOL_FIELDS:
                values[key] = 1 if value else 0
            elif key in _DATETIME_FIELDS:
                values[key] = _iso(value)
            else:
                values[key] = value
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
        return result.rowcount > 0

    def touch_last_login(self, account_id: int, when: datetime) -> None:
        self.update_account(account_id, last_login=when)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, account_id: int) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.account_id == account_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    # ------------------------------------------------------------------
    # OAuth provisioning
    # ------------------------------------------------------------------

    def provision_oauth_account(
        self,
        account: Account,
        profile: Profile,
        role_name: str,
        max_attempts: int = 3,
    ) -> tuple[Account, bool]:
        """Find-or-create an account and its profile.

        The email lookup and both inserts run on one connection, but pysqlite
        only emits BEGIN before the first INSERT, so on SQLite the lookup is not
        isolated from a concurrent callback. UNIQUE(email) is the guarantee: the
        losing insert raises IntegrityError, the transaction rolls back (no
        orphan profile), and the winner's row is returned instead.

        profile.alias is the *base* alias; a numeric suffix is appended until
        it is free.

        Returns (account, created).

        Raises DefaultRoleMissing if role_name has no row -- a role-less
        account is never created.
        """
        for attempt in range(1, max_attempts + 1):
            try:
                with self.engine.begin() as conn:
                    row = conn.execute(_account_select().where(_accounts.c.email == account.email)).fetchone()
                    if row is not None:
                        return _row_to_account(row), False

                    role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == role_name)).scalar()
                    if role_id is None:
                        raise DefaultRoleMissing(f"Default role {role_name!r} is missing; refusing to create account.")

                    now = _now_iso()
                    result = conn.execute(
                        _accounts.insert().values(
                            email=account.email,
                            hashed_password=account.hashed_password,
                            role_id=role_id,
                            active=1 if account.active else 0,
                            suspended=1 if account.suspended else 0,
                            auth_provider=account.auth_provider,
                            password_set_by_user=1 if account.password_set_by_user else 0,
                            email_verified_at=_iso(account.email_verified_at),
                            last_login=None,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                    account_id = result.inserted_primary_key[0]
                    values = _profile_values(profile)
                    values["account_id"] = account_id
                    values["alias"] = _unique_alias(conn, profile.alias)
                    conn.execute(_profiles.insert().values(**values))
            except IntegrityError:
                winner = self.get_by_email(account.email)
                if winner is not None:
                    logger.info("Concurrent provisioning for %s resolved to account %s", account.email, winner.id)
                    return winner, False
                # Alias taken by an unrelated concurrent insert; retry with a fresh suffix.
                if attempt == max_attempts:
                    raise
                continue

            created = self.get_by_id(account_id)
            if created is None:
                raise RuntimeError(f"Account {account_id} not found after insert.")
            return created, True

        raise RuntimeError("provision_oauth_account exhausted its attempts")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, record: SessionRecord) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    sid=record.sid,
                    account_id=record.account_id,
                    created_at=_iso(record.created_at) or _now_iso(),
                    expires_at=_iso(record.expires_at),
                )
            )

    def get_session(self, sid: str) -> SessionRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.sid == sid)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, sid: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.sid == sid))
        return result.rowcount > 0

    def delete_sessions_for(self, account_id: int) -> int:
        """Delete every session row for an account. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.account_id == account_id))
        return result.rowcount

    def count_sessions_for(self, account_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.account_id == account_id)
            ).scalar()
        return result or 0

    def purge_expired_sessions(self, now: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < _iso(now)))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _profile_values(profile: Profile) -> dict:
    return {
        "account_id": profile.account_id,
        "alias": profile.alias,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "image_url": profile.image_url,
        "banner_url": profile.banner_url,
        "bio": profile.bio,
        "preferences": json.dumps(asdict(profile.preferences)),
        "created_at": _iso(profile.created_at) or _now_iso(),
    }


def _preferences_from_json(raw: str | None) -> Preferences:
    if not raw:
        return Preferences()
    data = json.loads(raw)
    notify_fields = EmailNotifications.__dataclass_fields__
    notifications = {k: bool(v) for k, v in (data.get("email_notifications") or {}).items() if k in notify_fields}
    return Preferences(
        darkmode=bool(data.get("darkmode", False)),
        email_notifications=EmailNotifications(**notifications),
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role_name,
        role_id=row.role_id,
        active=bool(row.active),
        suspended=bool(row.suspended),
        auth_provider=row.auth_provider,
        password_set_by_user=bool(row.password_set_by_user),
        email_verified_at=_parse(row.email_verified_at),
        last_login=_parse(row.last_login),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_profile(row) -> Profile:
    return Profile(
        id=row.id,
        account_id=row.account_id,
        alias=row.alias,
        first_name=row.first_name,
        last_name=row.last_name,
        image_url=row.image_url,
        banner_url=row.banner_url,
        bio=row.bio,
        preferences=_preferences_from_json(row.preferences),
        created_at=_parse(row.created_at),
    )


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        sid=row.sid,
        account_id=row.account_id,
        created_at=_parse(row.created_at),
        expires_at=_parse(row.expires_at),
    )
