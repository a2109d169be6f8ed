"""
System test: the auth API end to end, in-process over SQLite.

The app's lifespan is not run by ASGITransport; the fixture installs the
wired identity service on app.state the same way startup does.
"""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.database import build_engine, build_session_maker
from src.kernel.identity import reset_codes as reset_codes_module
from src.kernel.models.base import utcnow
from src.main import app

AUTH = "/api/v1/auth"

@pytest_asyncio.fixture
async def client(identity, session_factory):
    """Async client bound to the per-test identity service."""
    app.state.identity_service = identity
    app.state.session_factory = session_factory
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

def bearer(body: dict) -> dict:
    return {"Authorization": f"Bearer {body['accessToken']}"}

@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert "X-Request-ID" in r.headers
    assert r.json()["database"] == "connected"

@pytest.mark.asyncio
async def test_health_reports_unreachable_database(client: AsyncClient, tmp_path):
    unreachable = tmp_path / "no-such-dir" / "auth.db"
    missing = build_engine(f"sqlite+aiosqlite:///{unreachable}")
    app.state.session_factory = build_session_maker(missing)
    try:
        r = await client.get("/health")
    finally:
        await missing.dispose()

    assert r.status_code == 200
    assert r.json()["status"] == "degraded"
    assert r.json()["database"] == "unavailable"

@pytest.mark.asyncio
async def test_register_and_login_shape(client: AsyncClient, identity):
    r = await client.post(
        f"{AUTH}/register",
        json={
            "username": "bob",
            "firstName": "Bob",
            "lastName": "Builder",
            "email": "bob@example.com",
            "password": "SecurePass123!",
        },
    )
    assert r.status_code == 200, r.text
    registered = r.json()
    assert set(registered) == {
        "accessToken",
        "accessTokenExpiresAt",
        "refreshToken",
        "refreshTokenExpiresAt",
        "userId",
        "username",
        "email",
        "roles",
    }
    assert registered["roles"] == ["User"]

    r = await client.post(f"{AUTH}/login", json={"email": "bob@example.com", "password": "SecurePass123!"})
    assert r.status_code == 200
    body = r.json()
    claims = identity.issuer.decode_access_token(body["accessToken"])
    assert str(claims.user_id) == body["userId"] == registered["userId"]
    assert claims.username == body["username"] == "bob"
    assert claims.email == body["email"] == "bob@example.com"
    assert claims.roles == body["roles"]

@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, test_user):
    r = await client.post(
        f"{AUTH}/register",
        json={"username": "copy", "email": test_user.email, "password": "SecurePass123!"},
    )
    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_account"

@pytest.mark.asyncio
async def test_register_weak_password(client: AsyncClient):
    r = await client.post(
        f"{AUTH}/register",
        json={"username": "weak", "email": "weak@example.com", "password": "password"},
    )
    assert r.status_code == 422

@pytest.mark.asyncio
async def test_bad_credentials_are_generic(client: AsyncClient, test_user):
    wrong = await client.post(f"{AUTH}/login", json={"email": test_user.email, "password": "Nope12345!"})
    unknown = await client.post(f"{AUTH}/login", json={"email": "ghost@example.com", "password": "Nope12345!"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json()

@pytest.mark.asyncio
async def test_refresh_rotation_and_revoke_all(client: AsyncClient, test_user, user_password):
    """u1 logs in (R1), refreshes to R2, replays R1, then logs out everywhere."""
    r = await client.post(f"{AUTH}/login", json={"email": test_user.email, "password": user_password})
    login = r.json()
    r1 = login["refreshToken"]

    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": r1})
    assert r.status_code == 200, r.text
    refreshed = r.json()
    r2 = refreshed["refreshToken"]
    assert r2 != r1
    assert refreshed["userId"] == login["userId"]

    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": r1})
    assert r.status_code == 401
    assert r.json()["code"] == "token_rejected"

    r = await client.post(f"{AUTH}/revoke-all-tokens", headers=bearer(refreshed))
    assert r.status_code == 200
    assert r.json()["message"] == "All tokens revoked successfully"

    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": r2})
    assert r.status_code == 401

@pytest.mark.asyncio
async def test_revoke_token(client: AsyncClient, test_user, other_user, user_password):
    mine = (await client.post(f"{AUTH}/login", json={"email": test_user.email, "password": user_password})).json()
    theirs = (await client.post(f"{AUTH}/login", json={"email": other_user.email, "password": user_password})).json()

    r = await client.post(f"{AUTH}/revoke-token", json={"refreshToken": theirs["refreshToken"]}, headers=bearer(mine))
    assert r.status_code == 404

    r = await client.post(f"{AUTH}/revoke-token", json={"refreshToken": mine["refreshToken"]}, headers=bearer(mine))
    assert r.status_code == 200
    assert r.json()["message"] == "Token revoked successfully"

    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": mine["refreshToken"]})
    assert r.status_code == 401
    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": theirs["refreshToken"]})
    assert r.status_code == 200

@pytest.mark.asyncio
async def test_revoke_requires_access_token(client: AsyncClient):
    r = await client.post(f"{AUTH}/revoke-all-tokens")
    assert r.status_code == 401

    r = await client.post(f"{AUTH}/revoke-all-tokens", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401

@pytest.mark.asyncio
async def test_me_and_admin_only(client: AsyncClient, test_user, test_admin, user_password):
    user = (await client.post(f"{AUTH}/login", json={"email": test_user.email, "password": user_password})).json()
    admin = (await client.post(f"{AUTH}/login", json={"email": test_admin.email, "password": user_password})).json()

    r = await client.get(f"{AUTH}/me", headers=bearer(user))
    assert r.status_code == 200
    assert r.json()["userId"] == str(test_user.id)

    r = await client.get(f"{AUTH}/admin-only", headers=bearer(user))
    assert r.status_code == 403
    r = await client.get(f"{AUTH}/admin-only", headers=bearer(admin))
    assert r.status_code == 200

@pytest.mark.asyncio
async def test_forgot_password_is_uniform(client: AsyncClient, notifier, test_user):
    known = await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})
    unknown = await client.post(f"{AUTH}/forgot-password", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert known.json()["message"] == "If the email exists, a reset code has been sent."
    assert len(notifier.sent) == 1

@pytest.mark.asyncio
async def test_forgot_password_survives_notifier_outage(client: AsyncClient, notifier, test_user):
    notifier.fail = True

    r = await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})

    assert r.status_code == 200

@pytest.mark.asyncio
async def test_reset_code_expiry_window(client: AsyncClient, notifier, monkeypatch, test_user):
    """Code validates inside the window and is rejected fifteen minutes later."""
    await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})
    code = notifier.last_code()
    assert len(code) == 6 and code.isdigit()

    r = await client.post(f"{AUTH}/validate-code", json={"email": test_user.email, "code": code})
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Code is valid."}

    later = utcnow() + timedelta(minutes=15, seconds=1)
    monkeypatch.setattr(reset_codes_module, "utcnow", lambda: later)

    r = await client.post(f"{AUTH}/validate-code", json={"email": test_user.email, "code": code})
    assert r.status_code == 200
    assert r.json()["success"] is False

@pytest.mark.asyncio
async def test_reset_with_new_password(client: AsyncClient, notifier, test_user):
    await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})
    payload = {"email": test_user.email, "code": notifier.last_code(), "newPassword": "BrandNewPass456!"}

    r = await client.post(f"{AUTH}/verify-reset-code", json=payload)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "Password has been reset successfully."
    assert body["sessionTokens"] is None

    r = await client.post(f"{AUTH}/verify-reset-code", json=payload)
    assert r.status_code == 401
    assert r.json()["code"] == "code_rejected"

    r = await client.post(f"{AUTH}/login", json={"email": test_user.email, "password": "BrandNewPass456!"})
    assert r.status_code == 200

@pytest.mark.asyncio
async def test_reset_without_password_resumes_session(client: AsyncClient, identity, notifier, test_user):
    await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})

    r = await client.post(
        f"{AUTH}/verify-reset-code",
        json={"email": test_user.email, "code": notifier.last_code()},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Session continued successfully."
    tokens = body["sessionTokens"]
    claims = identity.issuer.decode_access_token(tokens["accessToken"])
    assert str(claims.user_id) == tokens["userId"] == str(test_user.id)
    assert claims.roles == tokens["roles"] == ["User"]

    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": tokens["refreshToken"]})
    assert r.status_code == 200

@pytest.mark.asyncio
async def test_malformed_code_is_validation_error(client: AsyncClient, test_user):
    r = await client.post(f"{AUTH}/validate-code", json={"email": test_user.email, "code": "12ab"})
    assert r.status_code == 422

@pytest.mark.asyncio
async def test_forgot_password_acknowledges_when_delivery_hangs(client: AsyncClient, identity, notifier, test_user):
    identity.config = replace(identity.config, operation_timeout_seconds=0.2)
    identity.reset_flow.config = replace(identity.reset_flow.config, notifier_timeout_seconds=None)

    async def hang(**kwargs):
        await asyncio.sleep(5)

    notifier.send_password_reset_code = hang

    r = await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})

    assert r.status_code == 200
    assert r.json()["message"] == "If the email exists, a reset code has been sent."

@pytest.mark.asyncio
async def test_password_reset_revokes_existing_sessions(client: AsyncClient, notifier, test_user, user_password):
    login = (await client.post(f"{AUTH}/login", json={"email": test_user.email, "password": user_password})).json()
    await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})

    r = await client.post(
        f"{AUTH}/verify-reset-code",
        json={"email": test_user.email, "code": notifier.last_code(), "newPassword": "BrandNewPass456!"},
    )
    assert r.status_code == 200

    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": login["refreshToken"]})
    assert r.status_code == 401

@pytest.mark.asyncio
async def test_password_reset_can_keep_existing_sessions(
    client: AsyncClient,
    identity,
    notifier,
    test_user,
    user_password,
):
    identity.reset_flow.config = replace(identity.reset_flow.config, revoke_sessions_on_password_reset=False)
    login = (await client.post(f"{AUTH}/login", json={"email": test_user.email, "password": user_password})).json()
    await client.post(f"{AUTH}/forgot-password", json={"email": test_user.email})

    r = await client.post(
        f"{AUTH}/verify-reset-code",
        json={"email": test_user.email, "code": notifier.last_code(), "newPassword": "BrandNewPass456!"},
    )
    assert r.status_code == 200
    assert r.json()["message"] == "Password has been reset successfully."

    r = await client.post(f"{AUTH}/refresh-token", json={"refreshToken": login["refreshToken"]})
    assert r.status_code == 200
