"""Queue jobs: delivery sends and automation emails."""
from __future__ import annotations

import pytest

from mailroom.db import models
from mailroom.queue import campaign_runner, scheduler, worker
from mailroom.services import analytics, audience, campaigns, outcomes
from mailroom.services.ses import SESSendError


class FakeSES:
    sent: list[dict] = []
    fail = False

    def send_email(self, **kwargs):
        if FakeSES.fail:
            raise SESSendError("Throttling: Maximum sending rate exceeded.")
        FakeSES.sent.append(kwargs)
        return f"ses-{len(FakeSES.sent)}"


@pytest.fixture(autouse=True)
def fake_ses(monkeypatch):
    FakeSES.sent = []
    FakeSES.fail = False
    monkeypatch.setattr(worker, "SESService", FakeSES)
    return FakeSES


def _pending(db, campaign, subscriber):
    db.expire_all()
    return outcomes.find_record(db, campaign.id, subscriber.id)


def test_delivery_job_sends_and_stamps(db, tenant, make_campaign, start_campaign, fake_ses):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]
    record = _pending(db, campaign, ada)

    message_id = worker.process_delivery_job(record.id)

    assert message_id == "ses-1"
    assert fake_ses.sent[0]["recipient"] == "ada@example.com"
    assert fake_ses.sent[0]["subject"] == "Hello Ada"
    assert "/track/open/" in fake_ses.sent[0]["html_body"]
    record = _pending(db, campaign, ada)
    assert record.status == "sent"
    assert record.message_id == "ses-1"
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).sent == 1
    # Single recipient, so the campaign is finished.
    assert db.get(models.Campaign, campaign.id).status == "sent"


def test_delivery_job_runs_once(db, tenant, make_campaign, start_campaign, fake_ses):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    record = _pending(db, campaign, built.subscribers[0])

    worker.process_delivery_job(record.id)
    assert worker.process_delivery_job(record.id) is None
    assert len(fake_ses.sent) == 1


def test_ses_error_marks_record_failed(db, tenant, make_campaign, start_campaign, fake_ses):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    record = _pending(db, campaign, built.subscribers[0])
    fake_ses.fail = True

    assert worker.process_delivery_job(record.id) is None

    assert _pending(db, campaign, built.subscribers[0]).status == "failed"
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).failed == 1


def test_subscriber_who_left_is_not_mailed(db, tenant, make_campaign, start_campaign, fake_ses):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com"))
    campaign, _ = start_campaign(built.campaign)
    leaver = built.subscribers[0]
    audience.unsubscribe(db, tenant.id, leaver.id)
    record = _pending(db, campaign, leaver)

    worker.process_delivery_job(record.id)

    assert fake_ses.sent == []
    assert _pending(db, campaign, leaver).status == "failed"


def test_paused_campaign_leaves_records_pending(db, tenant, make_campaign, start_campaign, fake_ses):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    campaigns.pause_campaign(db, tenant.id, campaign.id)
    record = _pending(db, campaign, built.subscribers[0])

    assert worker.process_delivery_job(record.id) is None
    assert fake_ses.sent == []
    assert _pending(db, campaign, built.subscribers[0]).status == "pending"


def test_template_email_job(db, tenant, make_campaign, fake_ses):
    built = make_campaign(tenant)
    ada = built.subscribers[0]

    message_id = worker.process_template_email(
        tenant_id=tenant.id, template_id=built.template.id, subscriber_id=ada.id
    )

    assert message_id == "ses-1"
    assert fake_ses.sent[0]["subject"] == "Hello Ada"
    assert "https://track.example.com/unsubscribe/" in fake_ses.sent[0]["html_body"]


def test_template_email_refuses_other_tenant(db, make_tenant, make_campaign, fake_ses):
    acme, globex = make_tenant("Acme"), make_tenant("Globex")
    built = make_campaign(acme)
    stranger = audience.create_subscriber(db, globex.id, email="stranger@example.com")

    assert worker.process_template_email(
        tenant_id=acme.id, template_id=built.template.id, subscriber_id=stranger.id
    ) is None
    assert fake_ses.sent == []


class FakeScheduler:
    def __init__(self, existing=()):
        self.jobs = {job_id: None for job_id in existing}
        self.cancelled: list[str] = []

    def __contains__(self, job_id):
        return job_id in self.jobs

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        self.jobs.pop(job_id, None)

    def schedule(self, **kwargs):
        self.jobs[kwargs["id"]] = kwargs
        return kwargs


def test_due_campaign_scan_replaces_existing_job():
    fake = FakeScheduler(existing=[scheduler.DUE_CAMPAIGNS_JOB_ID])

    job = scheduler.schedule_due_campaign_scan(fake)

    assert fake.cancelled == [scheduler.DUE_CAMPAIGNS_JOB_ID]
    assert job["func"] is campaign_runner.run_due_campaigns
    assert job["repeat"] is None
