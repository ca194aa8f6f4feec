"""Unauthenticated signup and double opt-in confirmation."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from mailroom.core.config import settings
from mailroom.core.errors import NotFound
from mailroom.core.rate_limit import client_key, create_rate_limiter
from mailroom.db.session import get_db
from mailroom.services import audience
from mailroom.services.template_engine import render_template
from mailroom.services.tenants import get_tenant

router = APIRouter(prefix="/public", tags=["public"])
rate_limiter = create_rate_limiter(settings.public_rate_limit_per_minute)


class PublicSubscribeRequest(BaseModel):
    tenant_id: int
    email: EmailStr
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    list_ids: list[int] = Field(default_factory=list)


class PublicSubscribeResponse(BaseModel):
    status: str
    message: str


MESSAGES = {
    "already_confirmed": "You are already subscribed.",
    "confirmation_resent": "We sent you a new confirmation email.",
    "confirmation_sent": "Check your inbox to confirm your subscription.",
}


@router.post("/subscribe", response_model=PublicSubscribeResponse, status_code=status.HTTP_202_ACCEPTED)
async def subscribe(
    payload: PublicSubscribeRequest, request: Request, db: Session = Depends(get_db)
) -> PublicSubscribeResponse:
    """Start a double opt-in signup. Rate limited per client address."""

    await rate_limiter.check(client_key(request))
    get_tenant(db, payload.tenant_id)
    _, outcome = audience.subscribe_public(
        db,
        payload.tenant_id,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        list_ids=payload.list_ids,
    )
    return PublicSubscribeResponse(status=outcome, message=MESSAGES[outcome])


@router.get("/confirm/{token}", response_class=HTMLResponse)
def confirm(token: str, db: Session = Depends(get_db)) -> HTMLResponse:
    try:
        audience.confirm_subscription(db, token)
    except NotFound as exc:
        page = render_template("page.html", title="Confirmation failed", message=exc.message)
        return HTMLResponse(page, status_code=status.HTTP_404_NOT_FOUND)
    page = render_template("page.html", title="Subscription confirmed", message="Thanks, you're on the list.")
    return HTMLResponse(page)
