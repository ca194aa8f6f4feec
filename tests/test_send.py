"""Tests for the send routes."""
from __future__ import annotations

from mailroom.api.routes import send
from mailroom.services import ses, suppression


def test_send_test_email(client, tenant, monkeypatch):
    sent = []

    def mock_send_email(**kwargs):  # type: ignore[override]
        sent.append(kwargs)
        return "test-message-id"

    monkeypatch.setattr(ses.ses_service, "send_email", mock_send_email)

    response = client.post(
        "/send/send-test",
        json={
            "recipient": "alice@example.com",
            "subject": "Hello",
            "html_body": "<p>Test</p>",
        },
        headers={"X-Tenant-ID": str(tenant.id)},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["message_id"] == "test-message-id"
    assert payload["queued"] is False
    assert payload["tenant_id"] == tenant.id
    assert sent[0]["html_body"] == "<p>Test</p>"
    assert sent[0]["sender_name"] == "Acme"
    assert sent[0]["reply_to"] == tenant.email


def test_send_test_email_enqueued(client, tenant, outbox, monkeypatch):
    monkeypatch.setattr(send, "enqueue_email_job", outbox.enqueue_email_job)

    response = client.post(
        "/send/send-test",
        json={"recipient": "alice@example.com", "subject": "Hello", "html_body": "<p>Test</p>", "enqueue": True},
        headers={"X-Tenant-ID": str(tenant.id)},
    )

    assert response.json()["queued"] is True
    assert outbox.emails[0]["recipient"] == "alice@example.com"


def test_ses_failure_is_bad_gateway(client, tenant, monkeypatch):
    def failing_send(**kwargs):
        raise ses.SESSendError("MessageRejected: Email address is not verified.")

    monkeypatch.setattr(ses.ses_service, "send_email", failing_send)

    response = client.post(
        "/send/send-test",
        json={"recipient": "alice@example.com", "subject": "Hello", "html_body": "<p>Test</p>"},
        headers={"X-Tenant-ID": str(tenant.id)},
    )

    assert response.status_code == 502
    assert "not verified" in response.json()["detail"]


def test_send_test_requires_tenant(client):
    response = client.post(
        "/send/send-test", json={"recipient": "alice@example.com", "subject": "Hello", "html_body": "<p>Test</p>"}
    )
    assert response.status_code == 422


def test_send_test_refuses_suppressed_recipient(client, db, tenant, monkeypatch):
    def unexpected_send(**kwargs):
        raise AssertionError("suppressed recipient must not be sent to")

    monkeypatch.setattr(ses.ses_service, "send_email", unexpected_send)
    suppression.add_suppression(db, tenant.id, email="alice@example.com", reason="complaint")

    response = client.post(
        "/send/send-test",
        json={"recipient": "Alice@example.com", "subject": "Hello", "html_body": "<p>Test</p>"},
        headers={"X-Tenant-ID": str(tenant.id)},
    )

    assert response.status_code == 409
    assert response.json()["error"] == "ConstraintViolation"
