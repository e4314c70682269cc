"""
API tests for the authentication and profile endpoints.
"""
import pytest
from httpx import AsyncClient
from starlette.requests import Request

from conftest import register_and_login

pytestmark = [pytest.mark.api, pytest.mark.auth]

ALICE = {"username": "alice", "email": "a@example.com", "password": "Secret123"}


def _set_cookies(response):
    return response.headers.get_list("set-cookie")


def _request(headers=None):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


class TestAuthFlow:
    """The reference walkthrough: register, duplicate, login, me, logout, refresh rotation."""

    @pytest.mark.asyncio
    async def test_register(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/register", json=ALICE)
        assert response.status_code == 201
        assert response.json() == {
            "id": 1,
            "username": "alice",
            "email": "a@example.com",
            "message": "User created successfully",
        }

    @pytest.mark.asyncio
    async def test_register_duplicate_username(self, async_client: AsyncClient):
        await async_client.post("/api/v1/register", json=ALICE)
        response = await async_client.post(
            "/api/v1/register", json={**ALICE, "email": "b@example.com"}
        )
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "USERNAME_EXISTS"
        assert body["details"] == {"username": "このユーザー名は既に使用されています"}

    @pytest.mark.asyncio
    async def test_login_sets_cookies(self, async_client: AsyncClient):
        await async_client.post("/api/v1/register", json=ALICE)
        response = await async_client.post(
            "/api/v1/login", json={"username": "alice", "password": "Secret123"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Login successful"
        assert body["user"] == {"id": 1, "username": "alice", "email": "a@example.com"}
        assert response.headers["cache-control"].startswith("no-store")

        cookies = _set_cookies(response)
        auth_cookie = next(c for c in cookies if c.startswith("auth_token="))
        refresh_cookie = next(c for c in cookies if c.startswith("refresh_token="))
        assert "Max-Age=900" in auth_cookie
        assert "HttpOnly" in auth_cookie
        assert "samesite=lax" in auth_cookie.lower()
        assert "Path=/" in auth_cookie
        assert "Max-Age=604800" in refresh_cookie
        assert "Path=/api/v1" in refresh_cookie
        assert "Secure" not in auth_cookie

    @pytest.mark.asyncio
    async def test_me_with_cookie(self, async_client: AsyncClient):
        await register_and_login(async_client, ALICE)
        response = await async_client.get("/api/v1/me")
        assert response.status_code == 200
        assert response.json() == {"id": 1, "username": "alice", "email": "a@example.com"}

    @pytest.mark.asyncio
    async def test_logout_then_reuse_is_revoked(self, async_client: AsyncClient):
        login = await register_and_login(async_client, ALICE)
        access_token = login.cookies["auth_token"]

        response = await async_client.post("/api/v1/logout")
        assert response.status_code == 200
        assert response.json() == {"message": "Logout successful"}

        response = await async_client.get(
            "/api/v1/me", headers={"Authorization": f"Bearer {access_token}"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_REVOKED"

    @pytest.mark.asyncio
    async def test_refresh_rotation(self, async_client: AsyncClient):
        login = await register_and_login(async_client, ALICE)
        r1 = login.cookies["refresh_token"]

        response = await async_client.post("/api/v1/refresh", json={"refresh_token": r1})
        assert response.status_code == 200
        r2 = response.json()["refresh_token"]
        assert r2 != r1
        assert response.json()["token_type"] == "bearer"

        response = await async_client.post("/api/v1/refresh", json={"refresh_token": r1})
        assert response.status_code == 401
        assert response.json()["code"] == "REFRESH_INVALID"

        response = await async_client.post("/api/v1/refresh", json={"refresh_token": r2})
        assert response.status_code == 200
        r3 = response.json()["refresh_token"]
        assert r3 not in (r1, r2)


class TestRegisterValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field,value,message",
        [
            ("username", "", "ユーザー名は必須です"),
            ("username", "ab", "ユーザー名は3-20文字で入力してください"),
            ("username", "a" * 21, "ユーザー名は3-20文字で入力してください"),
            ("username", "bad-name", "ユーザー名は英数字とアンダースコアのみ使用できます"),
            ("username", "alice\n", "ユーザー名は英数字とアンダースコアのみ使用できます"),
            ("email", "", "メールアドレスは必須です"),
            ("email", "not-an-email", "有効なメールアドレスを入力してください"),
            ("email", "a@example.", "有効なメールアドレスを入力してください"),
            ("password", "", "パスワードは必須です"),
            ("password", "Short1", "パスワードは8文字以上で入力してください"),
            ("password", "lettersonly", "パスワードは英数字の両方を含む必要があります"),
            ("password", "12345678", "パスワードは英数字の両方を含む必要があります"),
            ("password", "Secret1" + "x" * 66, "パスワードは72バイト以内で入力してください"),
            ("password", "Secret1" + "あ" * 22, "パスワードは72バイト以内で入力してください"),
        ],
    )
    async def test_field_rules(self, async_client: AsyncClient, field, value, message):
        response = await async_client.post("/api/v1/register", json={**ALICE, field: value})
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_FAILED"
        assert body["details"][field] == message

    @pytest.mark.asyncio
    async def test_missing_fields_are_required(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/register", json={})
        assert response.status_code == 400
        details = response.json()["details"]
        assert set(details) == {"username", "email", "password"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/register", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json() == {"code": "INVALID_JSON", "message": "無効なJSON形式です"}


class TestLogin:
    @pytest.mark.asyncio
    async def test_wrong_password(self, async_client: AsyncClient):
        await async_client.post("/api/v1/register", json=ALICE)
        response = await async_client.post(
            "/api/v1/login", json={"username": "alice", "password": "Secret124"}
        )
        assert response.status_code == 401
        assert response.json() == {
            "code": "INVALID_CREDENTIALS",
            "message": "ユーザー名またはパスワードが正しくありません",
        }
        assert "set-cookie" not in response.headers

    @pytest.mark.asyncio
    async def test_unknown_user(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/login", json={"username": "ghost", "password": "Secret123"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_CREDENTIALS"

    @pytest.mark.asyncio
    async def test_missing_fields(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/login", json={"username": ""})
        assert response.status_code == 400
        assert response.json()["details"] == {
            "username": "ユーザー名は必須です",
            "password": "パスワードは必須です",
        }


class TestGuard:
    @pytest.mark.asyncio
    async def test_no_token(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/me")
        assert response.status_code == 401
        assert response.json() == {"code": "UNAUTHORIZED", "message": "認証が必要です"}

    @pytest.mark.asyncio
    async def test_garbage_bearer_token(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_bearer_header_works_without_cookie(self, async_client: AsyncClient):
        login = await register_and_login(async_client, ALICE)
        token = login.cookies["auth_token"]
        async_client.cookies.clear()
        response = await async_client.get("/api/v1/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_cookie_wins_over_header(self, async_client: AsyncClient):
        await register_and_login(async_client, ALICE)
        response = await async_client.get("/api/v1/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_optional_never_rejects(self, app, async_client: AsyncClient):
        login = await register_and_login(async_client, ALICE)
        guard = app.state.guard
        assert await guard.optional(_request()) is None
        assert await guard.optional(_request({"Authorization": "Bearer nope"})) is None

        request = _request({"Cookie": f"auth_token={login.cookies['auth_token']}"})
        assert await guard.optional(request) == 1
        assert request.state.auth_user_id == 1


class TestRefreshEndpoint:
    @pytest.mark.asyncio
    async def test_refresh_from_cookie(self, async_client: AsyncClient):
        login = await register_and_login(async_client, ALICE)
        response = await async_client.post("/api/v1/refresh")
        assert response.status_code == 200
        assert response.json()["refresh_token"] != login.cookies["refresh_token"]
        assert any(c.startswith("auth_token=") for c in _set_cookies(response))

    @pytest.mark.asyncio
    async def test_refresh_without_token(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/refresh", json={})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_FAILED"
        assert "refresh_token" in response.json()["details"]


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_without_token(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/logout")
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_logout_with_garbage(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/logout", headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_logout_clears_cookies_and_revokes_refresh(self, async_client: AsyncClient):
        login = await register_and_login(async_client, ALICE)
        refresh_token = login.cookies["refresh_token"]
        response = await async_client.post("/api/v1/logout")
        cookies = _set_cookies(response)
        assert any(c.startswith("auth_token=") and "Max-Age=0" in c for c in cookies)
        assert any(c.startswith("refresh_token=") and "Max-Age=0" in c for c in cookies)

        response = await async_client.post("/api/v1/refresh", json={"refresh_token": refresh_token})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_double_logout_is_idempotent(self, async_client: AsyncClient):
        login = await register_and_login(async_client, ALICE)
        headers = {"Authorization": f"Bearer {login.cookies['auth_token']}"}
        await async_client.post("/api/v1/logout")
        response = await async_client.post("/api/v1/logout", headers=headers)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_logout_all(self, async_client: AsyncClient):
        first = await register_and_login(async_client, ALICE)
        first_refresh = first.cookies["refresh_token"]
        second = await async_client.post(
            "/api/v1/login", json={"username": "alice", "password": "Secret123"}
        )
        assert second.status_code == 200

        response = await async_client.post("/api/v1/logout/all")
        assert response.status_code == 200
        assert response.json() == {"message": "All sessions revoked", "revoked_sessions": 2}

        response = await async_client.post("/api/v1/refresh", json={"refresh_token": first_refresh})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_all_requires_auth(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/logout/all")
        assert response.status_code == 401


class TestProfile:
    @pytest.mark.asyncio
    async def test_update_profile(self, logged_in_client: AsyncClient, user_payload):
        response = await logged_in_client.put(
            "/api/v1/profile",
            json={"username": "renamed_user", "email": "renamed@example.com"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Profile updated successfully"
        assert body["user"]["username"] == "renamed_user"
        assert body["user"]["email"] == "renamed@example.com"

    @pytest.mark.asyncio
    async def test_new_password_requires_current(self, logged_in_client: AsyncClient, user_payload):
        response = await logged_in_client.put(
            "/api/v1/profile",
            json={
                "username": user_payload["username"],
                "email": user_payload["email"],
                "new_password": "Another123",
            },
        )
        assert response.status_code == 400
        assert response.json()["details"] == {"current_password": "現在のパスワードを入力してください"}

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, logged_in_client: AsyncClient, user_payload):
        response = await logged_in_client.put(
            "/api/v1/profile",
            json={
                "username": user_payload["username"],
                "email": user_payload["email"],
                "current_password": "Wrong1234",
                "new_password": "Another123",
            },
        )
        assert response.status_code == 401
        assert response.json()["code"] == "CURRENT_PASSWORD_INCORRECT"

    @pytest.mark.asyncio
    async def test_change_password_then_login(self, logged_in_client: AsyncClient, user_payload):
        response = await logged_in_client.put(
            "/api/v1/profile",
            json={
                "username": user_payload["username"],
                "email": user_payload["email"],
                "current_password": user_payload["password"],
                "new_password": "Another123",
            },
        )
        assert response.status_code == 200
        response = await logged_in_client.post(
            "/api/v1/login", json={"username": user_payload["username"], "password": "Another123"}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_profile_conflict(self, logged_in_client: AsyncClient, user_payload):
        other = {"username": "other_user", "email": "other@example.com", "password": "Secret123"}
        await logged_in_client.post("/api/v1/register", json=other)
        response = await logged_in_client.put(
            "/api/v1/profile", json={"username": "other_user", "email": user_payload["email"]}
        )
        assert response.status_code == 409
        assert response.json()["code"] == "USERNAME_EXISTS"

    @pytest.mark.asyncio
    async def test_username_with_trailing_newline(self, logged_in_client: AsyncClient, user_payload):
        response = await logged_in_client.put(
            "/api/v1/profile", json={"username": "alice\n", "email": user_payload["email"]}
        )
        assert response.status_code == 400
        assert response.json()["details"] == {
            "username": "ユーザー名は英数字とアンダースコアのみ使用できます"
        }

    @pytest.mark.asyncio
    async def test_bad_new_password_and_missing_current_both_reported(
        self, logged_in_client: AsyncClient, user_payload
    ):
        response = await logged_in_client.put(
            "/api/v1/profile",
            json={
                "username": user_payload["username"],
                "email": user_payload["email"],
                "new_password": "short",
            },
        )
        assert response.status_code == 400
        assert response.json()["details"] == {
            "new_password": "パスワードは8文字以上で入力してください",
            "current_password": "現在のパスワードを入力してください",
        }


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, async_client: AsyncClient):
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "message": "Todo API is running",
            "database": "sql_connected",
        }
