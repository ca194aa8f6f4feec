"""Public tracking endpoints embedded in outgoing mail."""
from __future__ import annotations

import base64

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from sqlalchemy.orm import Session

from mailroom.core.errors import NotFound
from mailroom.db import models
from mailroom.db.session import get_db
from mailroom.services import audience, engagement, outcomes
from mailroom.services.template_engine import render_template
from mailroom.services.tracking import is_safe_redirect, render_for_subscriber
from mailroom.utils import tokens
from mailroom.utils.logger import logger

router = APIRouter(tags=["tracking"])

TRACKING_PIXEL = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
NO_CACHE = {"Cache-Control": "no-store, no-cache, must-revalidate, private", "Pragma": "no-cache"}


def _page(title: str, message: str, status_code: int = 200, **extra) -> HTMLResponse:
    return HTMLResponse(render_template("page.html", title=title, message=message, **extra), status_code=status_code)


@router.get("/track/open/{token}")
def track_open(token: str, db: Session = Depends(get_db)) -> Response:
    """Always answer with the pixel; bad tokens are simply not counted."""

    decoded = tokens.decode_open(token)
    if decoded is not None:
        try:
            outcomes.apply_delivery_event(
                db, campaign_id=decoded.campaign_id, subscriber_id=decoded.subscriber_id, event_type="opened"
            )
        except NotFound:
            logger.info("Open for missing delivery record %s/%s", decoded.campaign_id, decoded.subscriber_id)
    return Response(content=TRACKING_PIXEL, media_type="image/png", headers=NO_CACHE)


@router.get("/track/click/{token}")
def track_click(token: str, db: Session = Depends(get_db)) -> RedirectResponse:
    decoded = tokens.decode_click(token)
    if decoded is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired tracking link")
    safe, reason = is_safe_redirect(decoded.url)
    if not safe:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=reason)
    try:
        engagement.record_link_click(
            db, campaign_id=decoded.campaign_id, subscriber_id=decoded.subscriber_id, url=decoded.url
        )
    except NotFound:
        logger.info("Click for missing delivery record %s/%s", decoded.campaign_id, decoded.subscriber_id)
    return RedirectResponse(url=decoded.url, status_code=status.HTTP_302_FOUND)


@router.get("/unsubscribe/{token}", response_class=HTMLResponse)
def unsubscribe_page(token: str, request: Request) -> HTMLResponse:
    if tokens.decode_unsubscribe(token) is None:
        return _page("Link expired", "This unsubscribe link is invalid or has expired.", status.HTTP_400_BAD_REQUEST)
    return _page(
        "Unsubscribe",
        "Click below to stop receiving these emails.",
        action_url=str(request.url),
        action_label="Unsubscribe",
    )


@router.post("/unsubscribe/{token}", response_class=HTMLResponse)
def unsubscribe(token: str, db: Session = Depends(get_db)) -> HTMLResponse:
    """Unsubscribe; also serves RFC 8058 one-click List-Unsubscribe posts."""

    decoded = tokens.decode_unsubscribe(token)
    if decoded is None:
        return _page("Link expired", "This unsubscribe link is invalid or has expired.", status.HTTP_400_BAD_REQUEST)

    try:
        if decoded.campaign_id is not None:
            try:
                outcomes.apply_delivery_event(
                    db,
                    campaign_id=decoded.campaign_id,
                    subscriber_id=decoded.subscriber_id,
                    event_type="unsubscribed",
                    tenant_id=decoded.tenant_id,
                )
            except NotFound:
                audience.unsubscribe(db, decoded.tenant_id, decoded.subscriber_id)
        else:
            audience.unsubscribe(db, decoded.tenant_id, decoded.subscriber_id)
    except NotFound:
        return _page("Not found", "We could not find this subscription.", status.HTTP_404_NOT_FOUND)
    return _page("Unsubscribed", "You will no longer receive these emails.")


@router.get("/view/{token}", response_class=HTMLResponse)
def web_version(token: str, request: Request, db: Session = Depends(get_db)) -> HTMLResponse:
    decoded = tokens.decode_web_view(token)
    if decoded is None:
        return _page("Link expired", "This link is invalid or has expired.", status.HTTP_400_BAD_REQUEST)
    campaign = db.get(models.Campaign, decoded.campaign_id)
    subscriber = db.get(models.Subscriber, decoded.subscriber_id)
    if (
        campaign is None
        or subscriber is None
        or campaign.tenant_id != decoded.tenant_id
        or subscriber.tenant_id != decoded.tenant_id
    ):
        return _page("Not found", "This email is no longer available.", status.HTTP_404_NOT_FOUND)

    try:
        engagement.record_web_view(
            db,
            campaign_id=campaign.id,
            subscriber_id=subscriber.id,
            tenant_id=decoded.tenant_id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except NotFound:
        logger.info("Web view without delivery record %s/%s", campaign.id, subscriber.id)
    rendered = render_for_subscriber(campaign, campaign.template, subscriber, track=False)
    return HTMLResponse(rendered.html)
