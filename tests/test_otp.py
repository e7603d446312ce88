"""
tests/test_otp.py
Tests for email verification: OTP delivery, verification, expiry and
resend throttling.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import User


async def _register(client: AsyncClient, email: str = "anil@example.com"):
    response = await client.post(
        "/auth/register", json={"name": "Anil", "email": email, "password": "secret123"}
    )
    assert response.status_code == 201
    return response


async def _user(db: AsyncSession, email: str = "anil@example.com") -> User:
    return (await db.execute(select(User).where(User.email == email))).scalar_one()


# ── Verification ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_verify_with_emailed_code(client: AsyncClient, db: AsyncSession, outbox):
    """The emailed code verifies the account and clears the OTP state."""
    await _register(client)
    otp = outbox.last_otp("anil@example.com")

    response = await client.post("/auth/verify-otp", json={"email": "anil@example.com", "otp": otp})
    assert response.status_code == 200
    body = response.json()
    assert body["verified"] is True
    assert "tokens" not in body

    user = await _user(db)
    assert user.is_verified is True
    assert user.otp_hash is None
    assert user.otp_resend_count == 0


@pytest.mark.asyncio
async def test_verify_with_auto_login_issues_tokens(client: AsyncClient, outbox):
    await _register(client)
    otp = outbox.last_otp("anil@example.com")

    response = await client.post(
        "/auth/verify-otp", json={"email": "anil@example.com", "otp": otp, "autoLogin": True}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["autoLogin"] is True
    assert body["tokens"]["accessToken"]


@pytest.mark.asyncio
async def test_verify_wrong_code(client: AsyncClient, db: AsyncSession, outbox):
    await _register(client)
    otp = outbox.last_otp("anil@example.com")
    wrong = "000000" if otp != "000000" else "111111"

    response = await client.post("/auth/verify-otp", json={"email": "anil@example.com", "otp": wrong})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid OTP"
    assert (await _user(db)).is_verified is False


@pytest.mark.asyncio
async def test_verify_expired_code(client: AsyncClient, db: AsyncSession, outbox):
    await _register(client)
    otp = outbox.last_otp("anil@example.com")
    user = await _user(db)
    user.otp_expires_at = user.otp_expires_at - timedelta(minutes=30)
    await db.commit()

    response = await client.post("/auth/verify-otp", json={"email": "anil@example.com", "otp": otp})
    assert response.status_code == 400
    assert response.json()["message"] == "OTP has expired. Please request a new one."


@pytest.mark.asyncio
async def test_verify_unknown_email(client: AsyncClient):
    response = await client.post("/auth/verify-otp", json={"email": "ghost@example.com", "otp": "123456"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_verify_already_verified(client: AsyncClient, user: User):
    response = await client.post("/auth/verify-otp", json={"email": user.email, "otp": "123456"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_verified_user_can_login(client: AsyncClient, outbox):
    await _register(client)
    otp = outbox.last_otp("anil@example.com")
    await client.post("/auth/verify-otp", json={"email": "anil@example.com", "otp": otp})

    response = await client.post(
        "/auth/login", json={"email": "anil@example.com", "password": "secret123"}
    )
    assert response.status_code == 200


# ── Resend throttling ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_resend_too_soon(client: AsyncClient, outbox):
    """A second code inside the resend interval is refused with a wait time."""
    await _register(client)
    response = await client.post("/auth/resend-otp", json={"email": "anil@example.com"})
    assert response.status_code == 429
    body = response.json()
    assert body["waitTime"] >= 1
    assert body["message"].startswith("Please wait")
    assert response.headers["Retry-After"] == str(body["waitTime"])


@pytest.mark.asyncio
async def test_resend_after_interval_sends_new_code(client: AsyncClient, db: AsyncSession, outbox):
    await _register(client)
    first = outbox.last_otp("anil@example.com")
    user = await _user(db)
    user.otp_last_sent_at = user.otp_last_sent_at - timedelta(seconds=61)
    await db.commit()

    response = await client.post("/auth/resend-otp", json={"email": "anil@example.com"})
    assert response.status_code == 200
    assert len(outbox.messages) == 2
    assert (await _user(db)).otp_resend_count == 1

    # The previous code no longer verifies unless it happens to repeat.
    second = outbox.last_otp("anil@example.com")
    if second != first:
        stale = await client.post("/auth/verify-otp", json={"email": "anil@example.com", "otp": first})
        assert stale.status_code == 400


@pytest.mark.asyncio
async def test_resend_limit_per_window(client: AsyncClient, db: AsyncSession, outbox):
    await _register(client)
    user = await _user(db)
    user.otp_resend_count = 5
    user.otp_last_sent_at = user.otp_last_sent_at - timedelta(minutes=5)
    await db.commit()

    response = await client.post("/auth/resend-otp", json={"email": "anil@example.com"})
    assert response.status_code == 429
    assert response.json()["message"] == "Too many OTP requests. Please try again after an hour."


@pytest.mark.asyncio
async def test_resend_counter_resets_after_window(client: AsyncClient, db: AsyncSession, outbox):
    await _register(client)
    user = await _user(db)
    user.otp_resend_count = 5
    user.otp_last_sent_at = user.otp_last_sent_at - timedelta(hours=2)
    await db.commit()

    response = await client.post("/auth/resend-otp", json={"email": "anil@example.com"})
    assert response.status_code == 200
    assert (await _user(db)).otp_resend_count == 1


@pytest.mark.asyncio
async def test_resend_email_failure(client: AsyncClient, db: AsyncSession, outbox):
    await _register(client)
    user = await _user(db)
    user.otp_last_sent_at = user.otp_last_sent_at - timedelta(seconds=61)
    await db.commit()
    outbox.fail = True

    response = await client.post("/auth/resend-otp", json={"email": "anil@example.com"})
    assert response.status_code == 500
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_resend_for_verified_user(client: AsyncClient, user: User, outbox):
    response = await client.post("/auth/resend-otp", json={"email": user.email})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_resend_unknown_email(client: AsyncClient, outbox):
    response = await client.post("/auth/resend-otp", json={"email": "ghost@example.com"})
    assert response.status_code == 404
