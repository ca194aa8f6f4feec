"""FastAPI application instance."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailroom.api.routes import (
    admin_tools,
    automations,
    campaigns,
    dashboard,
    domains,
    events,
    lists,
    notifications,
    public,
    send,
    subscribers,
    suppression,
    templates,
    tenants,
    tracking,
)
from mailroom.core.config import settings
from mailroom.core.errors import MailroomError
from mailroom.db import models
from mailroom.db.session import engine
from mailroom.services.ses import SESSendError
from mailroom.utils.logger import configure_logging, logger


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - startup hook
    configure_logging()
    # Ensure tables exist for local development. Alembic should manage in production.
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MailroomError)
async def mailroom_error_handler(request: Request, exc: MailroomError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": type(exc).__name__})


@app.exception_handler(SESSendError)
async def ses_error_handler(request: Request, exc: SESSendError) -> JSONResponse:
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


app.include_router(tenants.router)
app.include_router(lists.router)
app.include_router(subscribers.router)
app.include_router(suppression.router)
app.include_router(templates.router)
app.include_router(campaigns.router)
app.include_router(automations.router)
app.include_router(dashboard.router)
app.include_router(notifications.router)
app.include_router(events.router)
app.include_router(tracking.router)
app.include_router(public.router)
app.include_router(domains.router)
app.include_router(send.router)
app.include_router(admin_tools.router)


@app.get("/health", tags=["system"])
async def health() -> dict[str, str]:
    """Simple uptime check."""

    return {"status": "ok"}
