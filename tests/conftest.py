"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, fake Redis, HTTP client,
seeded users and packages, and recorders for outbound email and storage calls.
"""

import os
import re

# Settings are read at import time, so the environment must be ready first.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_UNAUTH_PER_MINUTE"] = "1000"
os.environ["GOOGLE_CLIENT_ID"] = ""
os.environ["GOOGLE_CLIENT_SECRET"] = ""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import redis_client as redis_module
from config.database import Base, get_db
from main import app
from shared.models.models import (
    AuthProvider,
    Booking,
    CarBooking,
    CarType,
    PackageStatus,
    TourPackage,
    User,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password
from shared.utils.storage import BulkDeleteResult, StoredImage

PASSWORD = "password123"
OTP_RE = re.compile(r"\b(\d{6})\b")


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), UserRole(user.role).value, user.email)
    return {"Authorization": f"Bearer {token}"}


def in_days(days: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite transaction handling breaks SAVEPOINT; take over BEGIN ourselves.
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncSession:
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    previous = redis_module.redis_client
    redis_module.redis_client = client
    yield client
    redis_module.redis_client = previous
    await client.aclose()


@pytest_asyncio.fixture
async def client(db: AsyncSession, redis) -> AsyncClient:
    async def _override_get_db():
        yield db
        await db.commit()

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Outbound integrations ─────────────────────────────────────

@dataclass
class Outbox:
    messages: list[dict] = field(default_factory=list)
    fail: bool = False

    def last_otp(self, email: str) -> str:
        for message in reversed(self.messages):
            if message["to"] == email:
                return OTP_RE.search(message["text"]).group(1)
        raise AssertionError(f"No email sent to {email}")


@pytest.fixture
def outbox(monkeypatch) -> Outbox:
    from services.auth import router as auth_router
    from shared.utils.email import EmailDeliveryError

    box = Outbox()

    async def _send(to_email, subject, text_body, html_body):
        if box.fail:
            raise EmailDeliveryError("provider unavailable")
        box.messages.append({"to": to_email, "subject": subject, "text": text_body})
        return f"msg-{len(box.messages)}"

    monkeypatch.setattr(auth_router, "send_email", _send)
    return box


@dataclass
class StorageRecorder:
    uploaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    fail_deletes: bool = False


@pytest.fixture
def storage(monkeypatch) -> StorageRecorder:
    from services.admin import router as admin_router
    from services.auth import router as auth_router
    from services.cascade import coordinator
    from shared.utils.storage import StorageError

    recorder = StorageRecorder()

    async def _upload(content: bytes, folder: str) -> StoredImage:
        public_id = f"{folder}/img-{len(recorder.uploaded) + 1}.png"
        recorder.uploaded.append(public_id)
        return StoredImage(url=f"https://cdn.test/{public_id}", public_id=public_id)

    async def _delete(public_id: str) -> bool:
        if recorder.fail_deletes:
            raise StorageError(f"Failed to delete image {public_id}")
        recorder.deleted.append(public_id)
        return True

    async def _delete_many(public_ids) -> BulkDeleteResult:
        result = BulkDeleteResult()
        for public_id in public_ids:
            if recorder.fail_deletes:
                result.failed[public_id] = "storage down"
            else:
                recorder.deleted.append(public_id)
                result.deleted.append(public_id)
        return result

    monkeypatch.setattr(auth_router, "upload_image", _upload)
    monkeypatch.setattr(auth_router, "delete_image", _delete)
    monkeypatch.setattr(admin_router, "upload_image", _upload)
    monkeypatch.setattr(coordinator, "delete_image", _delete)
    monkeypatch.setattr(coordinator, "delete_images", _delete_many)
    return recorder


# ── Seed data ─────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    email: str,
    *,
    name: str = "Test User",
    role: UserRole = UserRole.USER,
    verified: bool = True,
) -> User:
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(PASSWORD),
        role=role,
        auth_provider=AuthProvider.LOCAL,
        is_verified=verified,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def user(db: AsyncSession) -> User:
    return await make_user(db, "ravi@example.com", name="Ravi Kumar")


@pytest_asyncio.fixture
async def other_user(db: AsyncSession) -> User:
    return await make_user(db, "sita@example.com", name="Sita Devi")


@pytest_asyncio.fixture
async def unverified_user(db: AsyncSession) -> User:
    return await make_user(db, "pending@example.com", name="Pending User", verified=False)


@pytest_asyncio.fixture
async def admin(db: AsyncSession) -> User:
    return await make_user(db, "admin@nextdrive.test", name="Admin", role=UserRole.ADMIN)


async def make_package(
    db: AsyncSession,
    title: str = "Patna City Tour",
    *,
    slug: str = "patna-city-tour",
    status: PackageStatus = PackageStatus.PUBLISHED,
    featured: bool = False,
    **extra,
) -> TourPackage:
    package = TourPackage(
        title=title,
        slug=slug,
        description="Golghar, Patna Museum and Takht Sri Patna Sahib",
        summary="Golghar, Patna Museum and Takht Sri Patna Sahib",
        duration_days=2,
        duration_nights=1,
        base_price=4999.0,
        original_price=5999.0,
        discount=1000.0,
        highlights=["Golghar", "Patna Museum"],
        status=status,
        featured=featured,
        **extra,
    )
    db.add(package)
    await db.commit()
    return package


@pytest_asyncio.fixture
async def package(db: AsyncSession) -> TourPackage:
    return await make_package(db)


async def make_tour_booking(db: AsyncSession, owner: User, package: TourPackage, **extra) -> Booking:
    booking = Booking(
        user_id=owner.id,
        tour_package_id=package.id if package else None,
        number_of_travelers=2,
        travel_date=in_days(10),
        total_amount=9998.0,
        contact_number="9876543210",
        **extra,
    )
    db.add(booking)
    await db.commit()
    return booking


async def make_car_booking(db: AsyncSession, owner: User, **extra) -> CarBooking:
    booking = CarBooking(
        user_id=owner.id,
        car_type=CarType.SUV,
        pickup_location="Patna Junction",
        dropoff_location="Bodh Gaya",
        pickup_date=in_days(5),
        pickup_time="09:30",
        number_of_passengers=4,
        **extra,
    )
    db.add(booking)
    await db.commit()
    return booking


@pytest_asyncio.fixture
async def tour_booking(db: AsyncSession, user: User, package: TourPackage) -> Booking:
    return await make_tour_booking(db, user, package)


@pytest_asyncio.fixture
async def car_booking(db: AsyncSession, user: User) -> CarBooking:
    return await make_car_booking(db, user)
