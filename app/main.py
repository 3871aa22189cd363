import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.observability import (
    http_exception_handler,
    log_event,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.subscription_gate import SUBSCRIPTION_WARNING_HEADER
from app.db.session import engine
from app.routers import (
    ad_settings,
    admin,
    audit,
    auth,
    integrations,
    orders,
    payments,
    pixel_diagnostics,
    platforms,
    products,
    storefront,
    subscription,
    team,
    tracking,
    whatsapp,
)

app = FastAPI(
    title=settings.app_name,
    version="0.3.0",
    description=(
        "Backend API for Sanadi, a multi-tenant storefront platform.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /platforms/register` or `POST /auth/login`.\n"
        "2. Click **Authorize** and use your email/username + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Test protected endpoints (`/products`, `/orders`, `/ad-settings`, `/whatsapp/session`)."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "User authentication and token lifecycle."},
        {"name": "platforms", "description": "Platform registration, profile and public storefront profile."},
        {"name": "subscription", "description": "Subscription status and renewal prices."},
        {"name": "admin", "description": "Super-admin platform management."},
        {"name": "team", "description": "Platform membership and role management."},
        {"name": "products", "description": "Product catalog management."},
        {"name": "storefront", "description": "Public catalog and order placement by subdomain."},
        {"name": "orders", "description": "Order lifecycle and status tracking."},
        {"name": "ad-settings", "description": "Meta pixel and TikTok pixel credentials."},
        {"name": "tracking", "description": "Server-side conversion events for Meta and TikTok."},
        {"name": "pixel-diagnostics", "description": "Pixel delivery success and external id matching."},
        {"name": "integrations", "description": "Retry outbox for failed Meta, TikTok and WhatsApp deliveries."},
        {"name": "whatsapp", "description": "WhatsApp session pairing and order messaging."},
        {"name": "payments", "description": "ZainCash subscription payments."},
        {"name": "audit", "description": "Audit trail endpoints for sensitive operations."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local storefront development runs on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[SUBSCRIPTION_WARNING_HEADER, "X-Request-ID", "Retry-After"],
)

app.include_router(auth.router)
app.include_router(platforms.router)
app.include_router(subscription.router)
app.include_router(admin.router)
app.include_router(team.router)
app.include_router(products.router)
app.include_router(storefront.router)
app.include_router(orders.router)
app.include_router(ad_settings.router)
app.include_router(tracking.router)
app.include_router(pixel_diagnostics.router)
app.include_router(integrations.router)
app.include_router(whatsapp.router)
app.include_router(payments.router)
app.include_router(audit.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        log_event("ready.database_unavailable", level=logging.ERROR, error=str(exc))
        return JSONResponse(status_code=503, content={"ok": False, "database": "unavailable"})
    return {
        "ok": True,
        "database": "ok",
        "zaincash_mode": "simulation" if settings.zaincash_simulation else ("test" if settings.zaincash_test_mode else "live"),
        "messaging_provider": settings.messaging_provider_default,
    }
