"""
Tests for /auth: login, logout, login-user listing and the session probe.
"""

import asyncio

import httpx
import pytest

from conftest import new_session_id, permission_rows, session_cookie, set_cookie_headers, user_row
from practice_pulse.api.app import create_app
from practice_pulse.auth.permissions import PERMISSIONS_FOR_USER_SQL
from practice_pulse.auth.service import RECORD_LOGIN_SQL, USER_WITH_ROLE_SQL
from practice_pulse.auth.sessions import DELETE_SESSION_SQL, INSERT_SESSION_SQL, TOUCH_SESSION_SQL, USER_BY_SESSION_SQL
from practice_pulse.auth.routes import LOGIN_USERS_SQL


def script_login(db, user, permissions=("manage users",)):
    """Answer every statement a successful login runs."""
    state = {"user": dict(user)}

    def record_login(user_id):
        if state["user"]["status"] == "pending":
            state["user"]["status"] = "active"
        state["user"]["last_login_at"] = "2026-10-19T12:00:00+00:00"
        return "UPDATE 1"

    db.on(USER_WITH_ROLE_SQL, fn=lambda user_id: [dict(state["user"])])
    db.on(RECORD_LOGIN_SQL, fn=record_login)
    db.on(INSERT_SESSION_SQL, "INSERT 0 1")
    db.on(PERMISSIONS_FOR_USER_SQL, permission_rows(*permissions))
    return state


# =============================================================================
# Login
# =============================================================================


class TestLogin:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"user_id": "1; DROP TABLE users;"},
        {"user_id": None},
        {"user_id": 0},
        {"user_id": -4},
        {"user_id": 2.5},
        {"user_id": True},
        {"user_id": "²"},
        {"user_id": "①"},
        {"user_id": "١٢"},
        {"user_id": " 7 8 "},
        {},
        [3],
        "3",
        3,
    ])
    async def test_rejects_non_integer_user_id(self, client, db, body):
        res = await client.post("/auth/login", json=body)

        assert res.status_code == 400
        assert res.json() == {"error": "user_id is required."}
        assert db.statements == []

    @pytest.mark.asyncio
    async def test_rejects_missing_body(self, client, db):
        res = await client.post("/auth/login")

        assert res.status_code == 400
        assert res.json() == {"error": "user_id is required."}

    @pytest.mark.asyncio
    async def test_unknown_user_is_404_without_session(self, client, db):
        db.on(USER_WITH_ROLE_SQL, [])

        res = await client.post("/auth/login", json={"user_id": 99})

        assert res.status_code == 404
        assert res.json() == {"error": "User not found"}
        assert db.executed(INSERT_SESSION_SQL) == []
        [tx] = db.transactions
        assert tx.rolled_back and tx.released and not tx.committed
        assert set_cookie_headers(res) == []

    @pytest.mark.asyncio
    async def test_inactive_user_is_refused(self, client, db):
        db.on(USER_WITH_ROLE_SQL, [user_row(10, status="inactive")])

        res = await client.post("/auth/login", json={"user_id": 10})

        assert res.status_code == 403
        assert res.json() == {"error": "User account is inactive"}
        assert db.executed(PERMISSIONS_FOR_USER_SQL) == []
        assert db.executed(RECORD_LOGIN_SQL) == []
        [tx] = db.transactions
        assert tx.rolled_back and tx.released

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["suspended", "", None])
    async def test_unrecognized_status_is_refused(self, client, db, status):
        db.on(USER_WITH_ROLE_SQL, [user_row(11, status=status)])

        res = await client.post("/auth/login", json={"user_id": 11})

        assert res.status_code == 403
        assert res.json() == {"error": "User status does not permit login"}
        assert db.transactions[0].rolled_back

    @pytest.mark.asyncio
    async def test_status_check_ignores_case_and_whitespace(self, client, db):
        script_login(db, user_row(12, status=" Active "))

        res = await client.post("/auth/login", json={"user_id": "12"})

        assert res.status_code == 200

    @pytest.mark.asyncio
    async def test_active_user_logs_in(self, client, db):
        script_login(db, user_row(3))

        res = await client.post("/auth/login", json={"user_id": 3})

        assert res.status_code == 200
        body = res.json()
        assert body["user_id"] == 3
        assert body["username"] == "user3@example.com"
        assert body["role_name"] == body["role"] == body["app_role"] == "Admin"
        assert body["default_route"] == "/dashboard"
        assert body["permissions"] == ["manage users"]

        [cookie] = set_cookie_headers(res)
        session_id = cookie.split(";")[0].split("=", 1)[1]
        [insert] = db.executed(INSERT_SESSION_SQL)
        assert insert.args == (session_id, 3)

        attributes = cookie.lower()
        assert "httponly" in attributes
        assert "samesite=lax" in attributes
        assert "path=/" in attributes
        assert "max-age=604800" in attributes
        assert "secure" not in attributes

    @pytest.mark.asyncio
    async def test_pending_user_is_activated(self, client, db):
        state = script_login(db, user_row(5, status="pending"), permissions=("View Locations", "view locations"))

        res = await client.post("/auth/login", json={"user_id": 5})

        assert res.status_code == 200
        body = res.json()
        assert body["status"] == "active"
        assert body["last_login_at"] is not None
        assert body["permissions"] == ["view locations"]
        assert state["user"]["status"] == "active"

        [tx] = db.transactions
        assert tx.committed and tx.released
        # Promotion and session insert share the login transaction
        assert any(s.sql == RECORD_LOGIN_SQL for s in tx.statements)
        assert len([s for s in tx.statements if s.sql == INSERT_SESSION_SQL]) == 1
        # Permissions are read after commit, outside the transaction
        [lookup] = db.executed(PERMISSIONS_FOR_USER_SQL)
        assert lookup.connection is None
        assert len(set_cookie_headers(res)) == 1

    @pytest.mark.asyncio
    async def test_store_failure_mid_transaction_rolls_back(self, client, db):
        script_login(db, user_row(3))
        db.on(INSERT_SESSION_SQL, error=ConnectionResetError("connection lost"))

        res = await client.post("/auth/login", json={"user_id": 3})

        assert res.status_code == 500
        assert res.json() == {"error": "Internal server error, logging in failed"}
        assert "connection lost" not in res.text
        [tx] = db.transactions
        assert tx.rolled_back and tx.released and not tx.committed

    @pytest.mark.asyncio
    async def test_secure_cookie_when_configured(self, settings, db):
        settings.session_cookie_secure = True
        script_login(db, user_row(3))
        app = create_app(settings, database=db)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as client:
            res = await client.post("/auth/login", json={"user_id": 3})

        [cookie] = set_cookie_headers(res)
        assert "secure" in cookie.lower()

    @pytest.mark.asyncio
    async def test_concurrent_logins_get_independent_sessions(self, client, db):
        script_login(db, user_row(3))

        first, second = await asyncio.gather(
            client.post("/auth/login", json={"user_id": 3}),
            client.post("/auth/login", json={"user_id": 3}),
        )

        assert first.status_code == second.status_code == 200
        inserts = db.executed(INSERT_SESSION_SQL)
        assert len(inserts) == 2
        assert inserts[0].args[0] != inserts[1].args[0]
        # Each login ran on its own connection and committed on its own
        assert len(db.transactions) == 2
        assert all(tx.committed and tx.released for tx in db.transactions)
        for tx in db.transactions:
            assert [s.sql for s in tx.statements].count(INSERT_SESSION_SQL) == 1


# =============================================================================
# Logout
# =============================================================================


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_revokes_and_clears_cookie(self, client, db):
        session_id = new_session_id()
        db.on(DELETE_SESSION_SQL, "DELETE 1")

        res = await client.post("/auth/logout", headers=session_cookie(session_id))

        assert res.status_code == 204
        assert res.content == b""
        [delete] = db.executed(DELETE_SESSION_SQL)
        assert delete.args == (session_id,)
        [cookie] = set_cookie_headers(res)
        assert "max-age=0" in cookie.lower()
        assert "httponly" in cookie.lower()

    @pytest.mark.asyncio
    async def test_logout_without_cookie(self, client, db):
        res = await client.post("/auth/logout")

        assert res.status_code == 204
        assert db.statements == []
        assert len(set_cookie_headers(res)) == 1

    @pytest.mark.asyncio
    async def test_logout_with_garbage_cookie(self, client, db):
        res = await client.post("/auth/logout", headers=session_cookie("session-value"))

        assert res.status_code == 204
        assert db.statements == []

    @pytest.mark.asyncio
    async def test_logout_twice_is_idempotent(self, client, db):
        session_id = new_session_id()
        results = iter(["DELETE 1", "DELETE 0"])
        db.on(DELETE_SESSION_SQL, fn=lambda _sid: next(results))

        first = await client.post("/auth/logout", headers=session_cookie(session_id))
        second = await client.post("/auth/logout", headers=session_cookie(session_id))

        assert first.status_code == second.status_code == 204
        assert len(set_cookie_headers(first)) == len(set_cookie_headers(second)) == 1


# =============================================================================
# Login user listing
# =============================================================================


class TestLoginUsers:
    @pytest.mark.asyncio
    async def test_defaults_to_active(self, client, db):
        db.on(LOGIN_USERS_SQL, [user_row(1), user_row(2)])

        res = await client.get("/auth/users")

        assert res.status_code == 200
        [query] = db.executed(LOGIN_USERS_SQL)
        assert query.args == (["active"],)
        assert res.json()[0] == {
            "user_id": 1,
            "username": "user1@example.com",
            "name": "User 1",
            "status": "active",
            "role_name": "Admin",
            "default_route": "/dashboard",
        }

    @pytest.mark.asyncio
    async def test_status_filter_is_normalized(self, client, db):
        db.on(LOGIN_USERS_SQL, [])

        res = await client.get("/auth/users?status=Pending, active&status=pending")

        assert res.status_code == 200
        [query] = db.executed(LOGIN_USERS_SQL)
        assert query.args == (["pending", "active"],)

    @pytest.mark.asyncio
    async def test_rejects_injection_in_status(self, client, db):
        injection = "active'); DROP TABLE in_kind_tracker.user_account; --"

        res = await client.get("/auth/users", params={"status": injection})

        assert res.status_code == 400
        assert res.json() == {
            "error": "Invalid status values: active'); drop table in_kind_tracker.user_account; --"
        }
        assert db.statements == []


# =============================================================================
# Session probe
# =============================================================================


class TestMe:
    @pytest.mark.asyncio
    async def test_returns_user_and_permissions(self, client, db):
        session_id = new_session_id()
        db.on(USER_BY_SESSION_SQL, [{"session_id": session_id, **user_row(7)}])
        db.on(PERMISSIONS_FOR_USER_SQL, permission_rows("view users", "Manage Users"))
        db.on(TOUCH_SESSION_SQL, "UPDATE 1")

        res = await client.get("/auth/me", headers=session_cookie(session_id))

        assert res.status_code == 200
        body = res.json()
        assert body["user_id"] == 7
        assert "session_id" not in body
        assert sorted(body["permissions"]) == ["manage users", "view users"]

    @pytest.mark.asyncio
    async def test_without_session_is_401(self, client, db):
        res = await client.get("/auth/me")

        assert res.status_code == 401
        assert res.json() == {"error": "Not authenticated"}
        assert len(set_cookie_headers(res)) == 1
