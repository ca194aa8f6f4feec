"""Campaign management endpoints."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db import models
from mailroom.db.session import get_db
from mailroom.queue.campaign_runner import dispatch_pending
from mailroom.services import analytics, audience, campaigns, engagement, tracking
from mailroom.services.fanout import FanOutResult

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


class CampaignCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    subject: str = Field(min_length=1, max_length=255)
    template_id: int | None = None
    from_name: str | None = None
    from_email: EmailStr | None = None
    reply_to: EmailStr | None = None
    list_ids: list[int] = Field(default_factory=list)


class CampaignUpdate(BaseModel):
    name: str | None = None
    subject: str | None = None
    template_id: int | None = None
    from_name: str | None = None
    from_email: EmailStr | None = None
    reply_to: EmailStr | None = None
    list_ids: list[int] | None = None


class CampaignResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    subject: str
    template_id: int | None = None
    from_name: str | None = None
    from_email: str | None = None
    reply_to: str | None = None
    status: str
    list_ids: list[int] = Field(default_factory=list)
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    created_at: datetime | None = None


class CampaignSchedule(BaseModel):
    scheduled_at: datetime | None = None


class CampaignFail(BaseModel):
    reason: str | None = None


class FanOutResponse(BaseModel):
    enrolled: int
    already_enrolled: int
    suppressed: int
    ineligible: int


class CampaignSendResponse(BaseModel):
    campaign: CampaignResponse
    fan_out: FanOutResponse
    enqueued: int


class AnalyticsResponse(BaseModel):
    total_subscribers: int
    sent: int
    delivered: int
    opened: int
    clicked: int
    bounced: int
    complained: int
    unsubscribed: int
    failed: int


class CampaignReport(BaseModel):
    counters: AnalyticsResponse
    rates: dict[str, float]
    links: list[dict]
    web_views: int


class DeliveryRecordResponse(BaseModel):
    id: int
    subscriber_id: int
    status: str
    message_id: str | None = None
    bounce_type: str | None = None
    sent_at: datetime | None = None
    opened_at: datetime | None = None
    clicked_at: datetime | None = None
    bounced_at: datetime | None = None
    complained_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CampaignPreview(BaseModel):
    subject: str
    html: str
    text: str | None = None


def to_response(db: Session, campaign: models.Campaign) -> CampaignResponse:
    return CampaignResponse(
        id=campaign.id,
        tenant_id=campaign.tenant_id,
        name=campaign.name,
        subject=campaign.subject,
        template_id=campaign.template_id,
        from_name=campaign.from_name,
        from_email=campaign.from_email,
        reply_to=campaign.reply_to,
        status=campaign.status,
        list_ids=campaigns.campaign_list_ids(db, campaign),
        scheduled_at=campaign.scheduled_at,
        sent_at=campaign.sent_at,
        created_at=campaign.created_at,
    )


def _fan_out_response(result: FanOutResult) -> FanOutResponse:
    return FanOutResponse(**result.as_dict())


@router.post("/", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
def create_campaign(
    payload: CampaignCreate, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> CampaignResponse:
    """Create a campaign draft."""

    campaign = campaigns.create_campaign(db, tenant_id, **payload.model_dump())
    return to_response(db, campaign)


@router.get("/", response_model=list[CampaignResponse])
def list_campaigns(
    status_filter: str | None = Query(default=None, alias="status"),
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> list[CampaignResponse]:
    return [to_response(db, c) for c in campaigns.list_campaigns(db, tenant_id, status=status_filter)]


@router.get("/{campaign_id}", response_model=CampaignResponse)
def get_campaign(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> CampaignResponse:
    return to_response(db, campaigns.get_campaign(db, tenant_id, campaign_id))


@router.patch("/{campaign_id}", response_model=CampaignResponse)
def update_campaign(
    campaign_id: int,
    payload: CampaignUpdate,
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> CampaignResponse:
    """Update campaign content; only drafts and paused campaigns are editable."""

    campaign = campaigns.update_campaign(db, tenant_id, campaign_id, **payload.model_dump(exclude_unset=True))
    return to_response(db, campaign)


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_campaign(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> Response:
    campaigns.delete_campaign(db, tenant_id, campaign_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{campaign_id}/schedule", response_model=CampaignResponse)
def schedule_campaign(
    campaign_id: int,
    payload: CampaignSchedule,
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> CampaignResponse:
    """Schedule a draft (or reschedule a paused campaign) for sending."""

    campaign = campaigns.schedule_campaign(db, tenant_id, campaign_id, payload.scheduled_at)
    return to_response(db, campaign)


@router.post("/{campaign_id}/cancel-schedule", response_model=CampaignResponse)
def cancel_campaign_schedule(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> CampaignResponse:
    """Return a scheduled campaign to draft."""

    return to_response(db, campaigns.cancel_schedule(db, tenant_id, campaign_id))


@router.post("/{campaign_id}/send-now", response_model=CampaignSendResponse)
def send_campaign_now(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> CampaignSendResponse:
    """Schedule for now if needed, fan out, and queue every delivery."""

    campaign = campaigns.get_campaign(db, tenant_id, campaign_id)
    if campaign.status == "draft":
        campaigns.schedule_campaign(db, tenant_id, campaign_id)
    campaign, result = campaigns.start_sending(db, tenant_id, campaign_id)
    enqueued = dispatch_pending(campaign.id)
    db.refresh(campaign)
    return CampaignSendResponse(campaign=to_response(db, campaign), fan_out=_fan_out_response(result), enqueued=enqueued)


@router.post("/{campaign_id}/pause", response_model=CampaignResponse)
def pause_campaign(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> CampaignResponse:
    return to_response(db, campaigns.pause_campaign(db, tenant_id, campaign_id))


@router.post("/{campaign_id}/resume", response_model=CampaignResponse)
def resume_campaign(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> CampaignResponse:
    """Resume a paused campaign; queued work picks up where it stopped."""

    campaign = campaigns.resume_campaign(db, tenant_id, campaign_id)
    if campaign.status == "sending":
        dispatch_pending(campaign.id)
    return to_response(db, campaign)


@router.post("/{campaign_id}/fail", response_model=CampaignResponse)
def fail_campaign(
    campaign_id: int,
    payload: CampaignFail,
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> CampaignResponse:
    return to_response(db, campaigns.fail_campaign(db, tenant_id, campaign_id, payload.reason))


@router.get("/{campaign_id}/deliveries", response_model=list[DeliveryRecordResponse])
def list_deliveries(
    campaign_id: int,
    status_filter: str | None = Query(default=None, alias="status"),
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> list[DeliveryRecordResponse]:
    campaign = campaigns.get_campaign(db, tenant_id, campaign_id)
    query = select(models.DeliveryRecord).where(
        models.DeliveryRecord.campaign_id == campaign.id, models.DeliveryRecord.tenant_id == tenant_id
    )
    if status_filter is not None:
        query = query.where(models.DeliveryRecord.status == status_filter)
    records = db.execute(query.order_by(models.DeliveryRecord.id)).scalars()
    return [DeliveryRecordResponse.model_validate(r) for r in records]


@router.get("/{campaign_id}/analytics", response_model=CampaignReport)
def campaign_analytics(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> CampaignReport:
    snapshot = analytics.get_campaign_analytics(db, tenant_id, campaign_id)
    return CampaignReport(
        counters=AnalyticsResponse(**snapshot.as_dict()),
        rates=snapshot.rates(),
        links=engagement.link_stats(db, tenant_id, campaign_id),
        web_views=engagement.web_view_count(db, tenant_id, campaign_id),
    )


@router.get("/{campaign_id}/analytics/recompute", response_model=AnalyticsResponse)
def recompute_analytics(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> AnalyticsResponse:
    """Counters derived from a full scan of the delivery ledger (read only)."""

    return AnalyticsResponse(**analytics.recompute_campaign_analytics(db, tenant_id, campaign_id).as_dict())


@router.post("/{campaign_id}/analytics/repair", response_model=AnalyticsResponse)
def repair_analytics(
    campaign_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> AnalyticsResponse:
    return AnalyticsResponse(**analytics.repair_campaign_analytics(db, tenant_id, campaign_id).as_dict())


@router.get("/{campaign_id}/preview", response_model=CampaignPreview)
def preview_campaign(
    campaign_id: int,
    subscriber_id: int,
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> CampaignPreview:
    """Render the campaign as one subscriber would receive it, without tracking."""

    campaign = campaigns.get_campaign(db, tenant_id, campaign_id)
    subscriber = audience.get_subscriber(db, tenant_id, subscriber_id)
    rendered = tracking.render_for_subscriber(campaign, campaign.template, subscriber, track=False)
    return CampaignPreview(subject=rendered.subject, html=rendered.html, text=rendered.text)
