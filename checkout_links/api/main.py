"""Checkout Links API — FastAPI application with DB-backed storage."""
from __future__ import annotations

import logging

from checkout_links.logging_config import setup_logging
setup_logging()
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from checkout_links.db.engine import async_session, engine, get_session
from checkout_links.db.tables import Base
from checkout_links.errors import CheckoutLinkError
from checkout_links.services.secret_key import load_or_create_secret
from checkout_links.services.storefront import close_storefront

# ── Sentry Error Tracking ────────────────────────
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.WARNING, event_level=logging.ERROR),
        ],
        # Attribution cookies are signed link ids; keep them out of events
        send_default_pii=False,
        before_send=lambda event, hint: (
            {**event, "request": {**event.get("request", {}), "cookies": None}}
            if "request" in event else event
        ),
    )

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate config, create tables, load the signing secret."""
    from checkout_links.startup_checks import validate_settings
    validate_settings()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")

    async with async_session() as session:
        app.state.secret_key = await load_or_create_secret(session)

    yield

    logger.info("Shutting down — draining connections...")
    await close_storefront()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Checkout Links API",
    version=VERSION,
    description="Shareable links that fill a shopper's cart and jump straight to checkout",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security headers
from checkout_links.middleware.security_headers import SecurityHeadersMiddleware
app.add_middleware(SecurityHeadersMiddleware)

# Request ID tracing — outermost so every log line carries it
from checkout_links.middleware.request_id import RequestIDMiddleware
app.add_middleware(RequestIDMiddleware)


from checkout_links.api.checkout import router as checkout_router
from checkout_links.api.links_admin import router as links_admin_router
from checkout_links.api.links_admin import entitlements_router
from checkout_links.api.order_events import router as order_events_router

app.include_router(links_admin_router)
app.include_router(entitlements_router)
app.include_router(order_events_router)
app.include_router(checkout_router)


@app.get("/health")
async def health(session: AsyncSession = Depends(get_session)):
    """Deep health check — validates DB connectivity."""
    try:
        await session.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        db_status = "error"
    status = "ok" if db_status == "connected" else "degraded"
    return {"status": status, "db": db_status, "version": VERSION}


@app.get("/ready")
async def readiness(session: AsyncSession = Depends(get_session)):
    """Readiness probe. Returns 503 if not ready to serve traffic."""
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        return JSONResponse(status_code=503, content={"ready": False, "reason": "database unavailable"})
    return {"ready": True}


# --- Structured Error Responses ---

@app.exception_handler(CheckoutLinkError)
async def checkout_link_error_handler(request: Request, exc: CheckoutLinkError):
    """Domain errors → {"error": code, "message": ...} with the error's status."""
    if exc.http_status >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean, structured validation errors instead of raw Pydantic output."""
    errors = []
    for err in exc.errors():
        field = " → ".join(str(loc) for loc in err["loc"]) if err.get("loc") else "unknown"
        errors.append({"field": field, "message": err["msg"]})
    return JSONResponse(status_code=422, content={
        "error": "validation_error",
        "message": "Invalid request data",
        "details": errors,
    })


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    """Consistent error envelope for all HTTP errors."""
    return JSONResponse(status_code=exc.status_code, content={
        "error": exc.detail if isinstance(exc.detail, str) else "error",
        "message": exc.detail,
    })


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions — never leak stack traces."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={
        "error": "internal_error",
        "message": "Something went wrong. Please try again.",
    })
