"""Pulse Notifications FastAPI application.

Serves the notification API synchronously over HTTP. Every request under
``/notifications`` runs inside the notifications domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the protean config overlay (storage providers).
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from notifications.config import get_settings
from notifications.domain import notifications  # noqa: E402

notifications.init()

_DOMAIN_PREFIXES = ("/notifications",)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Pulse Notifications API",
    description="Notification inbox, preferences and delivery decisions",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the notifications domain context for API requests."""
    if request.url.path.startswith(_DOMAIN_PREFIXES):
        with notifications.domain_context():
            response = await call_next(request)
        return response
    # Health check, docs, etc.
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers and error handlers
# ---------------------------------------------------------------------------
from notifications.api.errors import register_error_handlers  # noqa: E402
from notifications.api.routes import router as notifications_router  # noqa: E402

register_error_handlers(app)
app.include_router(notifications_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "service": get_settings().service_name,
            "domain": notifications.name,
        }
    )
