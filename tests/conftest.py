"""Shared fixtures: in-memory database, tenant and campaign factories, captured queue."""
from __future__ import annotations

import itertools
import os
from types import SimpleNamespace

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TRACKING_SECRET"] = "test-secret"
os.environ["TRACKING_DOMAIN"] = "https://track.example.com"

import pytest
from fastapi.testclient import TestClient

from mailroom.api.app import app
from mailroom.api.routes import public
from mailroom.db import models
from mailroom.db.session import SessionLocal, engine
from mailroom.queue import campaign_runner, worker
from mailroom.services import audience, campaigns, templates, tenants
from mailroom.utils import tokens

DEFAULT_HTML = (
    "<html><body><p>Hi {{ first_name }}</p>"
    '<a href="https://shop.example.com/sale">Sale</a>'
    '<a href="{{ unsubscribe_url }}">Unsubscribe</a></body></html>'
)


class Outbox:
    """Collects everything the app tried to put on the RQ queue."""

    def __init__(self) -> None:
        self.emails: list[dict] = []
        self.deliveries: list[int] = []
        self.template_emails: list[dict] = []

    def _job(self):
        return SimpleNamespace(id=f"job-{len(self.emails) + len(self.deliveries) + len(self.template_emails)}")

    def enqueue_email_job(self, **kwargs):
        self.emails.append(kwargs)
        return self._job()

    def enqueue_delivery_job(self, record_id: int):
        self.deliveries.append(record_id)
        return self._job()

    def enqueue_template_email(self, **kwargs):
        self.template_emails.append(kwargs)
        return self._job()


@pytest.fixture(autouse=True)
def schema():
    models.Base.metadata.create_all(bind=engine)
    tokens.set_tracking_secret("test-secret")
    public.rate_limiter.reset()
    yield
    models.Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    box = Outbox()
    monkeypatch.setattr(worker, "enqueue_email_job", box.enqueue_email_job)
    monkeypatch.setattr(worker, "enqueue_delivery_job", box.enqueue_delivery_job)
    monkeypatch.setattr(campaign_runner, "enqueue_delivery_job", box.enqueue_delivery_job)
    monkeypatch.setattr(worker, "enqueue_template_email", box.enqueue_template_email)
    return box


@pytest.fixture()
def db(schema):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db):
    return TestClient(app)


@pytest.fixture()
def make_tenant(db):
    counter = itertools.count(1)

    def _make(name: str | None = None) -> models.Tenant:
        n = next(counter)
        return tenants.create_tenant(
            db, email=f"owner{n}@tenant{n}.test", password="correct-horse", name=name or f"Tenant {n}"
        )

    return _make


@pytest.fixture()
def tenant(make_tenant):
    return make_tenant("Acme")


@pytest.fixture()
def make_campaign(db):
    """Build a list, subscribers, a template and a draft campaign targeting the list."""

    counter = itertools.count(1)

    def _make(tenant, emails=("ada@example.com",), html: str = DEFAULT_HTML, list_name: str | None = None):
        n = next(counter)
        mailing_list = audience.create_list(db, tenant.id, name=list_name or f"List {n}")
        subscribers = [
            audience.create_subscriber(
                db, tenant.id, email=email, first_name=email.split("@")[0].title(), list_ids=[mailing_list.id]
            )
            for email in emails
        ]
        template = templates.create_template(
            db, tenant.id, name=f"Template {n}", subject="Hello {{ first_name }}", html_content=html
        )
        campaign = campaigns.create_campaign(
            db,
            tenant.id,
            name=f"Campaign {n}",
            subject="Hello {{ first_name }}",
            template_id=template.id,
            list_ids=[mailing_list.id],
        )
        return SimpleNamespace(campaign=campaign, list=mailing_list, subscribers=subscribers, template=template)

    return _make


@pytest.fixture()
def start_campaign(db):
    """Schedule a draft for now and run it to ``sending``."""

    def _start(campaign):
        campaigns.schedule_campaign(db, campaign.tenant_id, campaign.id)
        started, result = campaigns.start_sending(db, campaign.tenant_id, campaign.id)
        return started, result

    return _start