"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Bearer JWT is the only credential; the user row is re-read on every request.
"""

import uuid
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.exceptions import AuthenticationError, AuthorizationError
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: str = payload.get("role", UserRole.USER.value)
        self.email: str = payload.get("email", "")
        self.jti: Optional[str] = payload.get("jti")
        self.payload = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate the JWT from the Authorization header.
    Checks the Redis deny-list so logged-out tokens stop working immediately.
    """
    if not credentials:
        raise AuthenticationError("No token provided", code="TOKEN_MISSING")

    try:
        payload = verify_access_token(credentials.credentials)
    except ExpiredSignatureError:
        raise AuthenticationError("Token expired", code="TOKEN_EXPIRED")
    except JWTError:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")

    if "sub" not in payload:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")

    jti = payload.get("jti")
    if jti and await RedisCache(redis).is_token_revoked(jti):
        raise AuthenticationError("Token has been revoked", code="TOKEN_REVOKED")

    return TokenData(payload)


async def _load_user(db: AsyncSession, user_id: str) -> Optional[User]:
    try:
        key = uuid.UUID(str(user_id))
    except ValueError:
        return None
    return await db.get(User, key)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the User row named by the JWT sub claim; unverified accounts are refused."""
    user = await _load_user(db, token_data.user_id)
    if not user:
        raise AuthenticationError("User not found", code="INVALID_TOKEN")
    if not user.is_verified:
        raise AuthorizationError(
            "Please verify your email before continuing",
            requiresVerification=True,
            email=user.email,
        )
    return user


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise AuthorizationError("Access denied. Admin only.")
        return current_user


require_admin = RoleRequired(UserRole.ADMIN)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> Optional[User]:
    """Returns the current user if a valid token was sent, None otherwise."""
    if not credentials:
        return None
    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError:
        return None

    jti = payload.get("jti")
    if jti and await RedisCache(redis).is_token_revoked(jti):
        return None
    user = await _load_user(db, payload.get("sub", ""))
    if user and not user.is_verified:
        return None
    return user
