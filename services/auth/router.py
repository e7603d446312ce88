"""
services/auth/router.py
Account endpoints: email + password registration with OTP verification,
login, token refresh/logout, profile management, self-deletion, and
Google OAuth2 sign-in.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.cascade.coordinator import delete_user
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import AuthProvider, RefreshToken, User, UserRole
from shared.schemas.schemas import (
    AuthResponse,
    DeleteAccountRequest,
    DeleteAccountResponse,
    DeletedData,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    ProfileUpdateRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResendOtpRequest,
    TokenPair,
    TokenResponse,
    UserEnvelope,
    UserResponse,
    VerifyOtpRequest,
)
from shared.utils.email import (
    EmailConfigurationError,
    EmailDeliveryError,
    render_otp_email,
    send_email,
)
from shared.utils.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    FeatureDisabledError,
    NotFoundError,
    RateLimitError,
    ServiceUnavailableError,
    ValidationError,
)
from shared.utils.security import (
    create_access_token,
    create_refresh_token,
    generate_otp,
    get_token_remaining_ttl,
    hash_otp,
    hash_password,
    hash_token,
    verify_otp,
    verify_password,
)
from shared.utils.storage import InvalidImageError, StorageError, delete_image, upload_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

DELETE_CONFIRMATION = "DELETE MY ACCOUNT"

# ── OAuth Setup ───────────────────────────────────────────────
oauth = OAuth()
if settings.google_oauth_enabled:
    oauth.register(
        name="google",
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )


# ── Helpers ───────────────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def _issue_tokens(user: User, db: AsyncSession, request: Request) -> TokenPair:
    """Issue an access token and store a new refresh token for the user."""
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=UserRole(user.role).value,
        email=user.email,
    )

    raw_refresh, hashed_refresh = create_refresh_token()
    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash=hashed_refresh,
            expires_at=_now() + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
            user_agent=request.headers.get("user-agent"),
            ip_address=request.client.host if request.client else None,
        )
    )
    return TokenPair(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


def _assign_otp(user: User, now: datetime) -> str:
    """Put a fresh code on the user and return it in clear for the email."""
    otp = generate_otp()
    user.otp_hash = hash_otp(otp)
    user.otp_expires_at = now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES)
    user.otp_last_sent_at = now
    return otp


def _clear_otp(user: User) -> None:
    user.otp_hash = None
    user.otp_expires_at = None
    user.otp_last_sent_at = None
    user.otp_resend_count = 0


async def _send_otp(user: User, otp: str) -> None:
    subject, text, html = render_otp_email(user.name, otp)
    await send_email(user.email, subject, text, html)


# ── Registration & Verification ───────────────────────────────

@router.post(
    "/register",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Create an unverified local account and email it a verification code.
    No tokens are issued until the email is verified.
    """
    existing = await _user_by_email(db, data.email)
    if existing:
        if not existing.is_verified:
            raise ConflictError(
                "User already exists but email is not verified. "
                "Please check your email for the verification code or request a new one.",
                requiresVerification=True,
                email=existing.email,
            )
        raise ConflictError("User already exists with this email. Please login instead.")

    user = User(
        name=data.name,
        email=data.email,
        password_hash=hash_password(data.password),
        auth_provider=AuthProvider.LOCAL,
        role=UserRole.USER,
        is_verified=False,
        otp_resend_count=0,
    )
    otp = _assign_otp(user, _now())
    db.add(user)
    await db.commit()
    logger.info(f"Registered user {user.id}")

    try:
        await _send_otp(user, otp)
    except (EmailConfigurationError, EmailDeliveryError) as e:
        logger.warning(f"Verification email to {user.email} failed: {e}")
        return AuthResponse(
            message=(
                "Registration successful! However, there was an issue sending the verification "
                "email. Please use 'Resend OTP' to get your verification code."
            ),
            user=UserResponse.model_validate(user),
            requires_verification=True,
            email_issue=True,
        )

    return AuthResponse(
        message="Registration successful! Please check your email for the verification code.",
        user=UserResponse.model_validate(user),
        requires_verification=True,
    )


@router.post("/resend-otp", response_model=AuthResponse, response_model_exclude_none=True)
async def resend_otp(data: ResendOtpRequest, db: AsyncSession = Depends(get_db)):
    """
    Throttled: one send per OTP_RESEND_INTERVAL_SECONDS and at most
    OTP_MAX_RESENDS_PER_WINDOW sends per window since the last one.
    """
    user = await _user_by_email(db, data.email)
    if not user:
        raise NotFoundError("User not found")
    if user.is_verified:
        raise ConflictError("User is already verified")

    now = _now()
    last_sent = user.otp_last_sent_at
    if last_sent:
        elapsed = (now - last_sent).total_seconds()
        if elapsed < settings.OTP_RESEND_INTERVAL_SECONDS:
            wait = max(1, math.ceil(settings.OTP_RESEND_INTERVAL_SECONDS - elapsed))
            raise RateLimitError(
                f"Please wait {wait} seconds before requesting a new OTP",
                retry_after=wait,
                waitTime=wait,
            )
        if elapsed >= settings.OTP_RESEND_WINDOW_SECONDS:
            user.otp_resend_count = 0

    if user.otp_resend_count >= settings.OTP_MAX_RESENDS_PER_WINDOW:
        raise RateLimitError(
            "Too many OTP requests. Please try again after an hour.",
            retry_after=settings.OTP_RESEND_WINDOW_SECONDS,
        )

    otp = _assign_otp(user, now)
    user.otp_resend_count += 1
    await db.commit()

    try:
        await _send_otp(user, otp)
    except (EmailConfigurationError, EmailDeliveryError) as e:
        logger.error(f"OTP resend to {user.email} failed: {e}")
        raise ServiceUnavailableError("Failed to send verification email. Please try again later.")

    return AuthResponse(message="A new OTP has been sent to your email")


@router.post("/verify-otp", response_model=AuthResponse, response_model_exclude_none=True)
async def verify_email(
    data: VerifyOtpRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    user = await _user_by_email(db, data.email)
    if not user:
        raise NotFoundError("User not found")
    if user.is_verified:
        raise ConflictError("Email is already verified")
    if not user.otp_hash or not user.otp_expires_at:
        raise ValidationError("No active OTP. Please request a new one.")
    if _now() >= user.otp_expires_at:
        raise ValidationError("OTP has expired. Please request a new one.")
    if not verify_otp(data.otp, user.otp_hash):
        raise ValidationError("Invalid OTP")

    user.is_verified = True
    _clear_otp(user)
    tokens = await _issue_tokens(user, db, request) if data.auto_login else None
    await db.commit()
    logger.info(f"User {user.id} verified email")

    return AuthResponse(
        message="Email verified successfully",
        verified=True,
        user=UserResponse.model_validate(user),
        tokens=tokens,
        auto_login=True if tokens else None,
    )


# ── Sessions ──────────────────────────────────────────────────

@router.post("/login", response_model=AuthResponse, response_model_exclude_none=True)
async def login(data: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    user = await _user_by_email(db, data.email)
    if not user:
        raise AuthenticationError("Invalid email or password")
    if not user.password_hash:
        raise AuthenticationError("Please login using Google")
    if not verify_password(data.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    if not user.is_verified:
        raise AuthorizationError(
            "Please verify your email before logging in",
            requiresVerification=True,
            email=user.email,
        )

    tokens = await _issue_tokens(user, db, request)
    await db.commit()
    logger.info(f"User {user.id} logged in")
    return AuthResponse(
        message="Login successful",
        user=UserResponse.model_validate(user),
        tokens=tokens,
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    data: RefreshTokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Rotate a refresh token: the presented one is revoked, a new pair is issued."""
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(data.refresh_token),
            RefreshToken.is_revoked.is_(False),
        )
    )
    db_token = result.scalar_one_or_none()
    if not db_token:
        raise AuthenticationError("Invalid or revoked refresh token", code="INVALID_TOKEN")
    if db_token.expires_at <= _now():
        raise AuthenticationError("Refresh token expired", code="TOKEN_EXPIRED")

    user = await db.get(User, db_token.user_id)
    if not user:
        raise AuthenticationError("User not found", code="INVALID_TOKEN")
    if not user.is_verified:
        raise AuthorizationError("Please verify your email before continuing", requiresVerification=True)

    db_token.is_revoked = True
    tokens = await _issue_tokens(user, db, request)
    await db.commit()
    return TokenResponse(tokens=tokens)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    data: Optional[LogoutRequest] = None,
    token_data: TokenData = Depends(get_token_data),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Deny-list the presented access token and revoke the refresh token, if sent."""
    if token_data.jti:
        await RedisCache(redis).revoke_token(token_data.jti, get_token_remaining_ttl(token_data.payload))

    if data and data.refresh_token:
        result = await db.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == hash_token(data.refresh_token),
                RefreshToken.user_id == current_user.id,
            )
        )
        db_token = result.scalar_one_or_none()
        if db_token:
            db_token.is_revoked = True

    await db.commit()
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserEnvelope)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserEnvelope(user=UserResponse.model_validate(current_user))


# ── Profile ───────────────────────────────────────────────────

@router.put("/profile", response_model=UserEnvelope)
async def update_profile(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    if "name" in changes and not changes["name"]:
        raise ValidationError("Name cannot be empty")

    for field, value in changes.items():
        if field in ("phone", "address", "bio") and value == "":
            value = None
        setattr(current_user, field, value)

    await db.commit()
    return UserEnvelope(
        message="Profile updated successfully",
        user=UserResponse.model_validate(current_user),
    )


@router.put("/profile/avatar", response_model=UserEnvelope)
async def update_avatar(
    avatar: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Upload a new avatar, then release the previous asset without blocking on it."""
    content = await avatar.read()
    try:
        stored = await upload_image(content, settings.STORAGE_AVATAR_FOLDER)
    except InvalidImageError as e:
        raise ValidationError(str(e))
    except StorageError as e:
        logger.error(f"Avatar upload for {current_user.id} failed: {e}")
        raise ServiceUnavailableError("Failed to upload avatar. Please try again.")

    previous = current_user.avatar_public_id
    current_user.avatar_url = stored.url
    current_user.avatar_public_id = stored.public_id
    await db.commit()

    if previous and previous != stored.public_id:
        try:
            await delete_image(previous)
        except StorageError as e:
            logger.warning(f"Old avatar {previous} was not released: {e}")

    return UserEnvelope(
        message="Avatar updated successfully",
        user=UserResponse.model_validate(current_user),
    )


@router.delete("/delete-account", response_model=DeleteAccountResponse)
async def delete_account(
    data: DeleteAccountRequest,
    token_data: TokenData = Depends(get_token_data),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    if data.confirm_text != DELETE_CONFIRMATION:
        raise ValidationError(f'Please type "{DELETE_CONFIRMATION}" to confirm account deletion')
    if current_user.is_admin:
        raise AuthorizationError("Admin accounts cannot be deleted through this endpoint")
    if data.password and current_user.password_hash:
        if not verify_password(data.password, current_user.password_hash):
            raise ValidationError("Incorrect password")

    report = await delete_user(db, current_user)
    await db.commit()

    if token_data.jti:
        await RedisCache(redis).revoke_token(token_data.jti, get_token_remaining_ttl(token_data.payload))

    return DeleteAccountResponse(
        message="Your account and all associated data have been permanently deleted",
        deleted_data=DeletedData(**report.deleted_data(current_user)),
    )


# ── Google OAuth2 ─────────────────────────────────────────────

def _google():
    if not settings.google_oauth_enabled:
        raise FeatureDisabledError("Google login is not configured")
    return oauth.create_client("google")


def _login_error(reason: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.FRONTEND_URL}/login?{urlencode({'error': reason})}")


async def _get_or_link_google_user(db: AsyncSession, profile: dict) -> User:
    """Find by Google id, else link the local account with that email, else create."""
    google_id = profile["sub"]
    email = profile["email"].lower()

    result = await db.execute(select(User).where(User.google_id == google_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = await _user_by_email(db, email)
    if user:
        user.google_id = google_id
        user.auth_provider = AuthProvider.GOOGLE
        user.is_verified = True
        _clear_otp(user)
        if not user.avatar_url and profile.get("picture"):
            user.avatar_url = profile["picture"]
        logger.info(f"Linked Google account to user {user.id}")
        return user

    user = User(
        name=profile.get("name") or email.split("@")[0],
        email=email,
        google_id=google_id,
        auth_provider=AuthProvider.GOOGLE,
        role=UserRole.USER,
        is_verified=True,
        avatar_url=profile.get("picture"),
    )
    db.add(user)
    await db.flush()
    logger.info(f"Created user {user.id} from Google sign-in")
    return user


@router.get("/google", summary="Initiate Google OAuth2 login")
async def google_login(request: Request):
    return await _google().authorize_redirect(request, settings.GOOGLE_REDIRECT_URI)


@router.get("/google/callback", summary="Google OAuth2 callback")
async def google_callback(request: Request, db: AsyncSession = Depends(get_db)):
    """Exchange the code, sign the user in, and hand the tokens to the frontend."""
    client = _google()
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as e:
        logger.warning(f"Google OAuth failed: {e.error}")
        return _login_error("oauth_failed")

    profile = token.get("userinfo") or {}
    if not profile.get("email") or not profile.get("sub"):
        return _login_error("no_email")
    if not profile.get("email_verified", False):
        return _login_error("email_not_verified")

    user = await _get_or_link_google_user(db, profile)
    tokens = await _issue_tokens(user, db, request)
    await db.commit()

    query = urlencode({"accessToken": tokens.access_token, "refreshToken": tokens.refresh_token})
    return RedirectResponse(f"{settings.FRONTEND_URL}/auth/google/success?{query}")
