"""Tenant test sends: one email through SES, outside any campaign.

The tenant's name goes out as the sender display name and its account
address as Reply-To. Recipients on the tenant's suppression list are
refused, so a test send cannot reach an address a campaign would skip.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.core.config import settings
from mailroom.core.errors import ConstraintViolation
from mailroom.core.rate_limit import create_rate_limiter
from mailroom.db.session import get_db
from mailroom.queue.worker import enqueue_email_job
from mailroom.services import suppression
from mailroom.services.ses import ses_service
from mailroom.services.tenants import get_tenant

router = APIRouter(prefix="/send", tags=["send"])
_rate_limiter = create_rate_limiter(settings.rate_limit_per_minute)


class TenantTestSend(BaseModel):
    recipient: EmailStr
    subject: str
    html_body: str
    text_body: str | None = None
    enqueue: bool = False


class TenantTestSendResult(BaseModel):
    tenant_id: int
    recipient: str
    message_id: str
    queued: bool = False


@router.post("/send-test", response_model=TenantTestSendResult)
async def send_test_email(
    request: TenantTestSend, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> TenantTestSendResult:
    """Send a test email as the calling tenant, now or via the RQ queue."""

    await _rate_limiter.check(f"tenant-{tenant_id}")

    recipient = str(request.recipient).lower()
    if suppression.is_suppressed(db, tenant_id, recipient):
        raise ConstraintViolation(f"{recipient} is on the suppression list of tenant {tenant_id}")
    tenant = get_tenant(db, tenant_id)
    message = {
        "subject": request.subject,
        "recipient": recipient,
        "html_body": request.html_body,
        "text_body": request.text_body,
        "sender_name": tenant.company_name or tenant.name,
        "reply_to": tenant.email,
    }

    if request.enqueue:
        job = enqueue_email_job(**message)
        return TenantTestSendResult(tenant_id=tenant_id, recipient=recipient, message_id=job.id, queued=True)

    message_id = ses_service.send_email(**message)
    return TenantTestSendResult(tenant_id=tenant_id, recipient=recipient, message_id=message_id, queued=False)
