"""
tests/test_store.py -- AccountStore persistence tests.

Covers:
  - account create / lookup / update round-trips booleans and datetimes
  - UNIQUE(email) is enforced at the database
  - state filters and counts
  - OAuth provisioning: alias de-duplication, concurrent callbacks for one
    email produce exactly one account, missing default role aborts
  - session rows
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import false
from sqlalchemy.exc import IntegrityError

import auth.store as account_store
from auth.models import Account, Preferences, Profile, SessionRecord
from auth.results import DefaultRoleMissing
from auth.store import AccountStore


def _google_account(email: str) -> Account:
    return Account(
        email=email,
        hashed_password="$2b$12$placeholder",
        auth_provider="google",
        password_set_by_user=False,
        email_verified_at=datetime.now(timezone.utc),
    )


def _profile(alias: str) -> Profile:
    return Profile(account_id=0, alias=alias, first_name="Jane", last_name="Doe", bio="")


class TestAccounts:
    def test_create_and_fetch_by_email(self, store: AccountStore, account_factory) -> None:
        acct = account_factory(store, "alice@example.com")
        fetched = store.get_by_email("alice@example.com")
        assert fetched is not None
        assert fetched.id == acct.id
        assert fetched.role == "user"
        assert fetched.active is True
        assert fetched.suspended is False
        assert fetched.created_at is not None
        assert fetched.created_at.tzinfo is not None

    def test_unknown_email_returns_none(self, store: AccountStore) -> None:
        assert store.get_by_email("nobody@example.com") is None
        assert store.get_by_id(9999) is None

    def test_duplicate_email_raises_integrity_error(self, store: AccountStore, account_factory) -> None:
        account_factory(store, "dup@example.com")
        with pytest.raises(IntegrityError):
            account_factory(store, "dup@example.com")

    def test_update_maps_booleans_and_datetimes(self, store: AccountStore, account_factory) -> None:
        acct = account_factory(store, "bob@example.com")
        when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert store.update_account(acct.id, active=False, suspended=True, last_login=when)
        fetched = store.get_by_id(acct.id)
        assert fetched.active is False
        assert fetched.suspended is True
        assert fetched.last_login == when

    def test_update_unknown_account_returns_false(self, store: AccountStore) -> None:
        assert store.update_account(424242, active=False) is False

    def test_update_rejects_unknown_fields(self, store: AccountStore, account_factory) -> None:
        acct = account_factory(store, "carol@example.com")
        with pytest.raises(ValueError):
            store.update_account(acct.id, email="other@example.com")

    def test_account_with_deleted_role_has_no_role(self, store: AccountStore, account_factory) -> None:
        acct = account_factory(store, "orphan@example.com")
        store.update_account(acct.id, role_id=9999)
        assert store.get_by_id(acct.id).role is None


class TestStateQueries:
    def test_list_and_count_by_state(self, store: AccountStore, account_factory) -> None:
        account_factory(store, "active@example.com")
        account_factory(store, "idle@example.com", active=False)
        account_factory(store, "banned@example.com", active=False, suspended=True)

        assert [a.email for a in store.list_accounts("active")] == ["active@example.com"]
        assert [a.email for a in store.list_accounts("inactive")] == ["idle@example.com"]
        assert [a.email for a in store.list_accounts("suspended")] == ["banned@example.com"]
        assert len(store.list_accounts()) == 3

        assert store.count_by_state() == {"total": 3, "active": 1, "inactive": 1, "suspended": 1}


class TestOAuthProvisioning:
    def test_creates_account_and_profile(self, store: AccountStore) -> None:
        acct, created = store.provision_oauth_account(_google_account("jane@example.com"), _profile("jane"), "user")
        assert created is True
        assert acct.role == "user"
        assert acct.auth_provider == "google"
        assert acct.password_set_by_user is False
        profile = store.get_profile(acct.id)
        assert profile is not None
        assert profile.alias == "jane"
        assert profile.preferences == Preferences()

    def test_existing_email_is_returned_not_duplicated(self, store: AccountStore, account_factory) -> None:
        existing = account_factory(store, "jane@example.com")
        acct, created = store.provision_oauth_account(_google_account("jane@example.com"), _profile("jane"), "user")
        assert created is False
        assert acct.id == existing.id
        assert store.get_profile(existing.id) is None

    def test_taken_alias_gets_numeric_suffix(self, store: AccountStore) -> None:
        first, _ = store.provision_oauth_account(_google_account("jdoe@example.com"), _profile("jdoe"), "user")
        second, _ = store.provision_oauth_account(_google_account("j.doe@example.org"), _profile("jdoe"), "user")
        third, _ = store.provision_oauth_account(_google_account("j-doe@example.net"), _profile("jdoe"), "user")
        assert store.get_profile(first.id).alias == "jdoe"
        assert store.get_profile(second.id).alias == "jdoe1"
        assert store.get_profile(third.id).alias == "jdoe2"

    def test_missing_default_role_aborts_without_creating(self, store_factory) -> None:
        bare = store_factory(seed_roles=False)
        with pytest.raises(DefaultRoleMissing):
            bare.provision_oauth_account(_google_account("x@example.com"), _profile("xuser"), "user")
        assert bare.get_by_email("x@example.com") is None
        assert bare.list_accounts() == []

    def test_concurrent_provisioning_creates_one_account(self, tmp_path) -> None:
        """Two simultaneous callbacks for one new email end with one account and one profile."""
        s = AccountStore(db_url=f"sqlite:///{tmp_path / 'race.db'}")
        barrier = threading.Barrier(2)
        results: list[tuple[Account, bool]] = []
        errors: list[BaseException] = []

        def worker() -> None:
            try:
                barrier.wait()
                results.append(
                    s.provision_oauth_account(_google_account("race@example.com"), _profile("race"), "user")
                )
            except BaseException as exc:  # surface thread failures in the main thread
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        try:
            assert errors == []
            assert len(results) == 2
            assert sorted(created for _, created in results) == [False, True]
            assert results[0][0].id == results[1][0].id
            assert len(s.list_accounts()) == 1
            assert s.get_profile(results[0][0].id).alias == "race"
        finally:
            s.close()

    def test_unique_email_settles_a_stale_lookup(self, store: AccountStore, account_factory, monkeypatch) -> None:
        """The first lookup misses a row another writer already committed; the insert still converges."""
        existing = account_factory(store, "jane@example.com")
        real_select = account_store._account_select
        calls: list[int] = []

        def stale_first_lookup():
            calls.append(1)
            query = real_select()
            return query.where(false()) if len(calls) == 1 else query

        monkeypatch.setattr("auth.store._account_select", stale_first_lookup)
        acct, created = store.provision_oauth_account(_google_account("jane@example.com"), _profile("jane"), "user")

        assert created is False
        assert acct.id == existing.id
        assert len(store.list_accounts()) == 1
        # The rolled-back transaction left no profile behind.
        assert store.get_profile(existing.id) is None


class TestSessions:
    def test_session_round_trip_and_revocation(self, store: AccountStore, account_factory) -> None:
        acct = account_factory(store, "sess@example.com")
        now = datetime.now(timezone.utc)
        for sid in ("s1", "s2"):
            store.create_session(
                SessionRecord(sid=sid, account_id=acct.id, created_at=now, expires_at=now + timedelta(hours=1))
            )
        record = store.get_session("s1")
        assert record is not None
        assert record.account_id == acct.id
        assert store.count_sessions_for(acct.id) == 2

        assert store.delete_session("s1") is True
        assert store.get_session("s1") is None
        assert store.delete_sessions_for(acct.id) == 1
        assert store.count_sessions_for(acct.id) == 0

    def test_purge_expired_sessions(self, store: AccountStore, account_factory) -> None:
        acct = account_factory(store, "purge@example.com")
        now = datetime.now(timezone.utc)
        store.create_session(SessionRecord(sid="old", account_id=acct.id, expires_at=now - timedelta(minutes=1)))
        store.create_session(SessionRecord(sid="new", account_id=acct.id, expires_at=now + timedelta(hours=1)))
        assert store.purge_expired_sessions(now) == 1
        assert store.get_session("old") is None
        assert store.get_session("new") is not None
