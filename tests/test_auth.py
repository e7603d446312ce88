"""
tests/test_auth.py
Tests for authentication: registration, login, JWT, refresh rotation,
logout, profile and account deletion.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, Notification, Query, RefreshToken, User
from shared.utils.security import create_access_token
from tests.conftest import PASSWORD, auth_headers, make_tour_booking


async def _login(client: AsyncClient, email: str, password: str = PASSWORD):
    return await client.post("/auth/login", json={"email": email, "password": password})


# ── Registration ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_register_creates_unverified_user(client: AsyncClient, db: AsyncSession, outbox):
    """Registration stores an unverified account and emails a code, without tokens."""
    response = await client.post(
        "/auth/register",
        json={"name": "Anil", "email": "Anil@Example.com", "password": "secret123"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["requiresVerification"] is True
    assert "tokens" not in body
    assert body["user"]["email"] == "anil@example.com"
    assert body["user"]["isVerified"] is False

    user = (await db.execute(select(User).where(User.email == "anil@example.com"))).scalar_one()
    assert user.otp_hash is not None
    assert user.otp_resend_count == 0
    assert len(outbox.messages) == 1


@pytest.mark.asyncio
async def test_register_reports_email_issue(client: AsyncClient, outbox):
    """A failed verification email still creates the account but flags the problem."""
    outbox.fail = True
    response = await client.post(
        "/auth/register",
        json={"name": "Anil", "email": "anil@example.com", "password": "secret123"},
    )
    assert response.status_code == 201
    assert response.json()["emailIssue"] is True


@pytest.mark.asyncio
async def test_register_duplicate_verified_email(client: AsyncClient, user: User, outbox):
    response = await client.post(
        "/auth/register",
        json={"name": "Again", "email": user.email, "password": "secret123"},
    )
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "login" in response.json()["message"]


@pytest.mark.asyncio
async def test_register_duplicate_unverified_email(client: AsyncClient, unverified_user: User, outbox):
    """Re-registering an unverified email points the client at verification."""
    response = await client.post(
        "/auth/register",
        json={"name": "Again", "email": unverified_user.email, "password": "secret123"},
    )
    assert response.status_code == 400
    assert response.json()["requiresVerification"] is True


@pytest.mark.asyncio
async def test_register_rejects_unknown_fields(client: AsyncClient, outbox):
    """Request bodies are strict: unexpected keys such as role are refused."""
    response = await client.post(
        "/auth/register",
        json={"name": "Anil", "email": "anil@example.com", "password": "secret123", "role": "admin"},
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_register_short_password(client: AsyncClient, outbox):
    response = await client.post(
        "/auth/register",
        json={"name": "Anil", "email": "anil@example.com", "password": "123"},
    )
    assert response.status_code == 400


# ── Login ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_success_returns_tokens(client: AsyncClient, user: User):
    response = await _login(client, user.email)
    assert response.status_code == 200
    body = response.json()
    assert body["tokens"]["tokenType"] == "Bearer"
    assert body["tokens"]["accessToken"]
    assert body["tokens"]["refreshToken"]
    assert body["user"]["id"] == str(user.id)


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, user: User):
    response = await _login(client, user.email, "not-the-password")
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_unknown_email(client: AsyncClient):
    response = await _login(client, "nobody@example.com")
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_unverified_user(client: AsyncClient, unverified_user: User):
    """Correct credentials on an unverified account are refused with a verification hint."""
    response = await _login(client, unverified_user.email)
    assert response.status_code == 403
    body = response.json()
    assert body["requiresVerification"] is True
    assert body["email"] == unverified_user.email


@pytest.mark.asyncio
async def test_login_google_only_account(client: AsyncClient, db: AsyncSession, user: User):
    user.password_hash = None
    await db.commit()
    response = await _login(client, user.email)
    assert response.status_code == 401
    assert response.json()["message"] == "Please login using Google"


# ── Tokens ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unauthenticated_returns_401(client: AsyncClient):
    response = await client.get("/auth/me")
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_MISSING"


@pytest.mark.asyncio
async def test_invalid_token_returns_401(client: AsyncClient):
    response = await client.get("/auth/me", headers={"Authorization": "Bearer this.is.not.a.jwt"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_expired_token_returns_token_expired(client: AsyncClient, user: User, monkeypatch):
    from shared.utils import security

    monkeypatch.setattr(security.settings, "JWT_ACCESS_TOKEN_EXPIRE_MINUTES", -1)
    token, _ = create_access_token(str(user.id), "user", user.email)
    monkeypatch.undo()

    response = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_get_me_returns_profile(client: AsyncClient, user: User):
    response = await client.get("/auth/me", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()["user"]
    assert data["email"] == user.email
    assert data["role"] == "user"
    assert data["authProvider"] == "local"


@pytest.mark.asyncio
async def test_get_me_admin(client: AsyncClient, admin: User):
    response = await client.get("/auth/me", headers=auth_headers(admin))
    assert response.json()["user"]["role"] == "admin"


@pytest.mark.asyncio
async def test_token_for_deleted_user_returns_401(client: AsyncClient, db: AsyncSession, user: User):
    headers = auth_headers(user)
    await db.delete(user)
    await db.commit()
    response = await client.get("/auth/me", headers=headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_rotates_token(client: AsyncClient, db: AsyncSession, user: User):
    """A refresh token works once; the replacement pair is usable."""
    login = (await _login(client, user.email)).json()
    refresh_token = login["tokens"]["refreshToken"]

    response = await client.post("/auth/refresh", json={"refreshToken": refresh_token})
    assert response.status_code == 200
    new_tokens = response.json()["tokens"]
    assert new_tokens["refreshToken"] != refresh_token

    replay = await client.post("/auth/refresh", json={"refreshToken": refresh_token})
    assert replay.status_code == 401

    me = await client.get(
        "/auth/me", headers={"Authorization": f"Bearer {new_tokens['accessToken']}"}
    )
    assert me.status_code == 200


@pytest.mark.asyncio
async def test_logout_invalidates_token(client: AsyncClient, db: AsyncSession, user: User):
    """After logout the access token is deny-listed and the refresh token revoked."""
    tokens = (await _login(client, user.email)).json()["tokens"]
    headers = {"Authorization": f"Bearer {tokens['accessToken']}"}

    response = await client.post(
        "/auth/logout", headers=headers, json={"refreshToken": tokens["refreshToken"]}
    )
    assert response.status_code == 200

    me = await client.get("/auth/me", headers=headers)
    assert me.status_code == 401
    assert me.json()["code"] == "TOKEN_REVOKED"

    stored = (await db.execute(select(RefreshToken).where(RefreshToken.user_id == user.id))).scalar_one()
    assert stored.is_revoked is True


# ── Profile ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_profile(client: AsyncClient, user: User):
    response = await client.put(
        "/auth/profile",
        headers=auth_headers(user),
        json={"name": "Ravi K.", "phone": "9123456780", "bio": "Loves heritage walks"},
    )
    assert response.status_code == 200
    data = response.json()["user"]
    assert data["name"] == "Ravi K."
    assert data["phone"] == "9123456780"


@pytest.mark.asyncio
async def test_update_profile_rejects_email_change(client: AsyncClient, user: User):
    response = await client.put(
        "/auth/profile", headers=auth_headers(user), json={"email": "new@example.com"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_profile_invalid_phone(client: AsyncClient, user: User):
    response = await client.put("/auth/profile", headers=auth_headers(user), json={"phone": "12345"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_upload_avatar_replaces_previous(client: AsyncClient, db: AsyncSession, user: User, storage):
    """The new avatar is stored and the previous asset released."""
    user.avatar_url = "https://cdn.test/old.png"
    user.avatar_public_id = "nextdrive/avatars/old.png"
    await db.commit()

    response = await client.put(
        "/auth/profile/avatar",
        headers=auth_headers(user),
        files={"avatar": ("me.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
    )
    assert response.status_code == 200
    assert response.json()["user"]["avatarPublicId"] == storage.uploaded[0]
    assert storage.deleted == ["nextdrive/avatars/old.png"]


# ── Account deletion ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_delete_account_requires_confirmation(client: AsyncClient, user: User, storage):
    response = await client.request(
        "DELETE", "/auth/delete-account", headers=auth_headers(user), json={"confirmText": "delete"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_account_wrong_password(client: AsyncClient, user: User, storage):
    response = await client.request(
        "DELETE",
        "/auth/delete-account",
        headers=auth_headers(user),
        json={"confirmText": "DELETE MY ACCOUNT", "password": "wrong"},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Incorrect password"


@pytest.mark.asyncio
async def test_admin_cannot_self_delete(client: AsyncClient, admin: User, storage):
    response = await client.request(
        "DELETE",
        "/auth/delete-account",
        headers=auth_headers(admin),
        json={"confirmText": "DELETE MY ACCOUNT"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_delete_account_removes_user_data(
    client: AsyncClient, db: AsyncSession, user: User, package, storage
):
    """Deletion removes the user with bookings, queries and notifications, and reports counts."""
    await make_tour_booking(db, user, package)
    db.add(
        Query(
            name=user.name,
            email=user.email,
            phone="9876543210",
            subject="Pickup time",
            category="others",
            message="Can pickup be earlier?",
        )
    )
    await db.commit()
    headers = auth_headers(user)

    response = await client.request(
        "DELETE",
        "/auth/delete-account",
        headers=headers,
        json={"confirmText": "DELETE MY ACCOUNT", "password": PASSWORD},
    )
    assert response.status_code == 200
    deleted = response.json()["deletedData"]
    assert deleted["user"] == "Ravi Kumar"
    assert deleted["tourBookings"] == 1
    assert deleted["queries"] == 1
    assert deleted["avatar"] == "No"

    assert await db.scalar(select(func.count()).select_from(User).where(User.id == user.id)) == 0
    assert await db.scalar(select(func.count()).select_from(Booking)) == 0
    assert await db.scalar(select(func.count()).select_from(Notification)) == 0

    me = await client.get("/auth/me", headers=headers)
    assert me.status_code == 401


# ── Google OAuth ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_google_login_not_configured(client: AsyncClient):
    response = await client.get("/auth/google")
    assert response.status_code == 501
    assert response.json()["success"] is False


# ── Health ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["name"]
