"""
shared/utils/security.py
JWT creation/verification, password and OTP hashing, refresh token helpers.
"""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(
    user_id: str,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """
    Create a signed JWT access token.
    Returns (token, jti); the jti is what logout puts on the deny-list.
    """
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": now,
        "exp": expire,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "type": "access",
        **(extra or {}),
    }

    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def verify_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.
    Raises ExpiredSignatureError for expired tokens, JWTError for anything else.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload


def get_token_remaining_ttl(payload: dict) -> int:
    """Returns seconds until token expiry. Used for JWT deny-list TTL."""
    exp = payload.get("exp", 0)
    remaining = exp - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))


def create_refresh_token() -> tuple[str, str]:
    """
    Create a cryptographically random refresh token.
    Returns (raw_token, hashed_token); only the hash is stored.
    """
    raw_token = secrets.token_urlsafe(64)
    return raw_token, hash_token(raw_token)


def hash_token(token: str) -> str:
    """SHA-256 hash for securely storing refresh tokens."""
    return hashlib.sha256(token.encode()).hexdigest()


# ── Passwords ─────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


# ── One-time codes ────────────────────────────────────────────

def generate_otp(length: int = settings.OTP_LENGTH) -> str:
    """Numeric code with leading zeros preserved, e.g. '042917'."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def hash_otp(otp: str) -> str:
    return pwd_context.hash(otp)


def verify_otp(otp: str, otp_hash: Optional[str]) -> bool:
    if not otp_hash:
        return False
    return pwd_context.verify(otp, otp_hash)
