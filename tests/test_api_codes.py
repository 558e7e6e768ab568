"""
tests/test_api_codes.py -- Password reset and reactivation endpoints.

Codes are read from the RecordingMailer wired in by the api fixture; the
fixture's FakeClock drives expiry and the per-day counters.
"""

from __future__ import annotations

PASSWORD = "Password1!"
NEW_PASSWORD = "BrandNew123"


def _reset_body(email: str, code: str, password: str = NEW_PASSWORD) -> dict:
    return {"email": email, "code": code, "password": password, "password_confirmation": password}


def _login(client, email: str, password: str):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


class TestPasswordReset:
    def test_full_reset_flow(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        resp = api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        assert resp.status_code == 200, resp.text
        code = api.mailer.last_code("alice@example.com")

        resp = api.client.post("/api/v1/password-reset/reset-password", json=_reset_body("alice@example.com", code))
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "Your password has been reset successfully!"

        assert _login(api.client, "alice@example.com", PASSWORD).status_code == 401
        assert _login(api.client, "alice@example.com", NEW_PASSWORD).status_code == 200

    def test_unknown_email_gets_the_same_answer(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        known = api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        unknown = api.client.post("/api/v1/password-reset/send-code", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert [m.to for m in api.mailer.sent] == ["alice@example.com"]

    def test_reset_revokes_existing_sessions(self, api, account_factory) -> None:
        acct = account_factory(api.store, "alice@example.com")
        headers = api.bearer(acct)
        assert api.client.get("/api/v1/auth/check", headers=headers).json()["authenticated"] is True

        api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        code = api.mailer.last_code()
        api.client.post("/api/v1/password-reset/reset-password", json=_reset_body("alice@example.com", code))

        assert api.client.get("/api/v1/auth/check", headers=headers).json()["authenticated"] is False

    def test_session_cleanup_failure_still_reports_success(self, api, account_factory, monkeypatch) -> None:
        account_factory(api.store, "alice@example.com")
        api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        code = api.mailer.last_code()

        def boom(account_id: int) -> int:
            raise RuntimeError("session store unavailable")

        monkeypatch.setattr(api.client.app.state.sessions, "revoke_all", boom)
        resp = api.client.post("/api/v1/password-reset/reset-password", json=_reset_body("alice@example.com", code))
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "Your password has been reset successfully!"
        assert _login(api.client, "alice@example.com", NEW_PASSWORD).status_code == 200

    def test_reset_reactivates_an_inactive_account(self, api, account_factory) -> None:
        account_factory(api.store, "idle@example.com", active=False)
        api.client.post("/api/v1/password-reset/send-code", json={"email": "idle@example.com"})
        code = api.mailer.last_code()
        api.client.post("/api/v1/password-reset/reset-password", json=_reset_body("idle@example.com", code))
        assert _login(api.client, "idle@example.com", NEW_PASSWORD).status_code == 200

    def test_wrong_code_is_400(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        code = api.mailer.last_code()
        wrong = "ZZZZZZ" if code != "ZZZZZZ" else "YYYYYY"
        resp = api.client.post("/api/v1/password-reset/reset-password", json=_reset_body("alice@example.com", wrong))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_code"

    def test_expired_code_is_400(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        code = api.mailer.last_code()
        api.clock.advance(minutes=30, seconds=1)
        resp = api.client.post("/api/v1/password-reset/reset-password", json=_reset_body("alice@example.com", code))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "code_expired"

    def test_unknown_email_reset_looks_like_a_bad_code(self, api) -> None:
        resp = api.client.post("/api/v1/password-reset/reset-password", json=_reset_body("ghost@example.com", "ABC234"))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_or_expired_code"

    def test_short_new_password_is_422(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        code = api.mailer.last_code()
        resp = api.client.post(
            "/api/v1/password-reset/reset-password", json=_reset_body("alice@example.com", code, password="short")
        )
        assert resp.status_code == 422
        assert "password" in resp.json()["error"]["errors"]

    def test_sixth_send_is_rate_limited(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        for n in range(5):
            resp = api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
            assert resp.status_code == 200, f"send #{n + 1}: {resp.text}"
        resp = api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "rate_limited"

        status = api.client.post("/api/v1/password-reset/status", json={"email": "alice@example.com"}).json()
        assert status == {
            "remaining_attempts": 0,
            "max_attempts": 5,
            "can_request_code": False,
            "active": None,
            "suspended": None,
        }

    def test_status_for_unknown_email_reports_full_allowance(self, api) -> None:
        status = api.client.post("/api/v1/password-reset/status", json={"email": "ghost@example.com"}).json()
        assert status["remaining_attempts"] == 5
        assert status["can_request_code"] is True

    def test_delivery_failure_is_500(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        api.mailer.fail = True
        resp = api.client.post("/api/v1/password-reset/send-code", json={"email": "alice@example.com"})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "delivery_failed"
        assert "unreachable" not in resp.text


class TestReactivation:
    def test_inactive_user_reactivates_and_is_logged_in(self, api, account_factory) -> None:
        """Inactive login -> send code -> verify -> session -> normal login works again."""
        account_factory(api.store, "idle@example.com", active=False)
        assert _login(api.client, "idle@example.com", PASSWORD).status_code == 403

        resp = api.client.post("/api/v1/reactivation/send-code", json={"email": "idle@example.com"})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["remaining_attempts"] == 4
        assert body["expires_at"]

        code = api.mailer.last_code("idle@example.com")
        resp = api.client.post("/api/v1/reactivation/verify-code", json={"email": "idle@example.com", "code": code})
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "Your account has been reactivated successfully!"
        assert resp.json()["user"]["active"] is True
        assert "access_token=" in resp.headers["set-cookie"]

        assert api.client.get("/api/v1/auth/check").json()["authenticated"] is True
        api.client.cookies.clear()
        assert _login(api.client, "idle@example.com", PASSWORD).status_code == 200

    def test_unknown_email_is_422(self, api) -> None:
        for path in ("send-code", "status"):
            resp = api.client.post(f"/api/v1/reactivation/{path}", json={"email": "ghost@example.com"})
            assert resp.status_code == 422, path
            assert "email" in resp.json()["error"]["errors"]
        resp = api.client.post("/api/v1/reactivation/verify-code", json={"email": "ghost@example.com", "code": "ABC234"})
        assert resp.status_code == 422

    def test_active_account_is_400(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        resp = api.client.post("/api/v1/reactivation/send-code", json={"email": "alice@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "already_active"
        assert api.mailer.sent == []

    def test_suspended_account_is_400(self, api, account_factory) -> None:
        account_factory(api.store, "banned@example.com", active=False, suspended=True)
        resp = api.client.post("/api/v1/reactivation/send-code", json={"email": "banned@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "account_suspended"

    def test_wrong_code_leaves_account_inactive(self, api, account_factory) -> None:
        acct = account_factory(api.store, "idle@example.com", active=False)
        api.client.post("/api/v1/reactivation/send-code", json={"email": "idle@example.com"})
        code = api.mailer.last_code()
        wrong = "ZZZZZZ" if code != "ZZZZZZ" else "YYYYYY"
        resp = api.client.post("/api/v1/reactivation/verify-code", json={"email": "idle@example.com", "code": wrong})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_code"
        assert api.store.get_by_id(acct.id).active is False

    def test_status_reports_state(self, api, account_factory) -> None:
        account_factory(api.store, "idle@example.com", active=False)
        api.client.post("/api/v1/reactivation/send-code", json={"email": "idle@example.com"})
        status = api.client.post("/api/v1/reactivation/status", json={"email": "idle@example.com"}).json()
        assert status == {
            "remaining_attempts": 4,
            "max_attempts": 5,
            "can_request_code": True,
            "active": False,
            "suspended": False,
        }

    def test_status_for_active_account_cannot_request(self, api, account_factory) -> None:
        account_factory(api.store, "alice@example.com")
        status = api.client.post("/api/v1/reactivation/status", json={"email": "alice@example.com"}).json()
        assert status["active"] is True
        assert status["can_request_code"] is False
