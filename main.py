"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers, startup/shutdown events.

Surfaces:
- /auth/*                 registration, OTP verification, login, profile
- /api/*                  public catalog, bookings, support queries
- /api/notifications/*    in-app inbox
- /admin/*                back-office operations
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from starlette.middleware.sessions import SessionMiddleware

from config import redis_client as redis_module
from config.database import AsyncSessionLocal, close_db, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from shared.utils.exceptions import register_exception_handlers

# Service routers
from services.admin.router import router as admin_router
from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.catalog.router import router as catalog_router
from services.notification.router import router as notification_router
from services.query.router import router as query_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            log_data["request_id"] = request_id
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.APP_ENV})")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    if not settings.google_oauth_enabled:
        logger.warning("Google OAuth is not configured; /auth/google will return 501")
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY is not set; OTP emails will fail")

    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

RATE_LIMIT_SKIP_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json", "/metrics"}


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## NextDrive Bihar API

Tour packages and car rentals across Bihar:
- **Auth**: email + password with OTP verification, Google sign-in, JWT access + refresh tokens
- **Catalog**: published tour packages, categories
- **Bookings**: tour and car bookings with admin-driven status lifecycle
- **Queries**: support tickets answered by admins and rated by customers
- **Notifications**: in-app inbox

### Authentication
Protected endpoints require an `Authorization: Bearer <access_token>` header.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (outermost first) ───────────────────────────────
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # Session cookie carries the OAuth state parameter between redirect and callback
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY,
        session_cookie="nextdrive_session",
        same_site="lax",
        https_only=settings.is_production,
    )

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Per-IP fixed window for unauthenticated traffic.
        Bearer requests are not counted. Fails open when Redis is down.
        """
        if request.url.path in RATE_LIMIT_SKIP_PATHS:
            return await call_next(request)
        if request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        client = redis_module.redis_client
        if client:
            client_ip = request.client.host if request.client else "unknown"
            try:
                allowed = await RedisCache(client).check_rate_limit(
                    f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
                )
            except Exception as e:
                logger.error(f"Rate limit check failed: {e}")
                allowed = True

            if not allowed:
                logger.warning(f"Rate limit exceeded for IP {client_ip}")
                return JSONResponse(
                    status_code=429,
                    content={"success": False, "message": "Too many requests. Please slow down."},
                    headers={"Retry-After": "60"},
                )

        return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────
    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            logger.exception("Health check: database unreachable")
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            client = redis_module.redis_client
            if client is None:
                raise RuntimeError("Redis not initialized")
            await client.ping()
            checks["redis"] = "ok"
        except Exception:
            logger.exception("Health check: redis unreachable")
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "success": True,
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(auth_router)
    app.include_router(catalog_router)
    app.include_router(booking_router)
    app.include_router(query_router)
    app.include_router(notification_router)
    app.include_router(admin_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
