"""Inbound event sinks: delivery outcomes, engagement webhooks and SES/SNS notifications."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.core.config import settings
from mailroom.db.session import get_db
from mailroom.services import engagement, outcomes
from mailroom.services.bounce_handler import handle_ses_message
from mailroom.utils.logger import logger
from mailroom.utils.sns import confirm_subscription, dumps_payload, verify_sns_signature

router = APIRouter(prefix="/events", tags=["events"])

EventType = Literal["sent", "delivered", "opened", "clicked", "bounced", "complained", "unsubscribed", "failed"]


class DeliveryEvent(BaseModel):
    campaign_id: int
    subscriber_id: int
    event_type: EventType
    timestamp: datetime | None = None
    bounce_type: str | None = None
    message_id: str | None = None


class DeliveryEventResponse(BaseModel):
    record_id: int
    event_type: str
    applied: bool
    status: str


class LinkClickEvent(BaseModel):
    campaign_id: int
    subscriber_id: int
    url: str


class WebViewEvent(BaseModel):
    campaign_id: int
    subscriber_id: int
    ip_address: str | None = None
    user_agent: str | None = None


@router.post("/delivery", response_model=DeliveryEventResponse)
def delivery_event(
    payload: DeliveryEvent, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> DeliveryEventResponse:
    """Apply one delivery outcome. Replays are accepted and change nothing."""

    result = outcomes.apply_delivery_event(
        db,
        campaign_id=payload.campaign_id,
        subscriber_id=payload.subscriber_id,
        event_type=payload.event_type,
        occurred_at=payload.timestamp,
        tenant_id=tenant_id,
        bounce_type=payload.bounce_type,
        message_id=payload.message_id,
    )
    return DeliveryEventResponse(
        record_id=result.record_id, event_type=result.event_type, applied=result.applied, status=result.status
    )


@router.post("/link-click", status_code=status.HTTP_201_CREATED)
def link_click_event(
    payload: LinkClickEvent, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> dict[str, int]:
    click = engagement.record_link_click(
        db,
        campaign_id=payload.campaign_id,
        subscriber_id=payload.subscriber_id,
        url=payload.url,
        tenant_id=tenant_id,
    )
    return {"id": click.id}


@router.post("/web-view", status_code=status.HTTP_201_CREATED)
def web_view_event(
    payload: WebViewEvent, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> dict[str, int]:
    view = engagement.record_web_view(
        db,
        campaign_id=payload.campaign_id,
        subscriber_id=payload.subscriber_id,
        tenant_id=tenant_id,
        ip_address=payload.ip_address,
        user_agent=payload.user_agent,
    )
    return {"id": view.id}


@router.post("/sns")
async def handle_sns_notification(request: Request, db: Session = Depends(get_db)) -> dict[str, str]:
    """Handle SES notifications delivered through SNS."""

    try:
        payload = json.loads(await request.body())
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid SNS payload JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid SNS payload JSON")

    topic_arn = payload.get("TopicArn")
    if settings.sns_allowed_topic_arns and topic_arn not in settings.sns_allowed_topic_arns:
        logger.warning("Rejected SNS message from topic %s", topic_arn)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Topic not allowed")

    if settings.sns_verify_signatures:
        valid, reason = verify_sns_signature(payload, settings.sns_timeout_seconds)
        if not valid:
            logger.warning("Rejected SNS message: %s payload=%s", reason, dumps_payload(payload, 2048))
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=reason)

    message_type = payload.get("Type")
    if message_type == "SubscriptionConfirmation":
        subscribe_url = payload.get("SubscribeURL") or ""
        confirmed = confirm_subscription(subscribe_url, settings.sns_timeout_seconds)
        return {"status": "confirmed" if confirmed else "confirmation_failed"}
    if message_type == "UnsubscribeConfirmation":
        return {"status": "ignored"}
    if message_type != "Notification":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported SNS message type")

    message_body = payload.get("Message")
    if not message_body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing SNS Message body")

    try:
        message = json.loads(message_body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid SNS Message JSON")

    result = handle_ses_message(db, message)
    if result is None:
        return {"status": "ignored"}
    return {"status": result.status if result.applied else "duplicate"}
