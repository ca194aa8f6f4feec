"""Tests for SNS event handling."""
from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from mailroom.api.routes import events
from mailroom.core.config import settings
from mailroom.db import models
from mailroom.services import outcomes, suppression
from mailroom.utils import sns as sns_utils

TOPIC_ARN = "arn:aws:sns:ap-southeast-2:123456789012:ses-events"


def _notification_payload(message: dict) -> dict:
    return {
        "Type": "Notification",
        "MessageId": "sns-message-id",
        "TopicArn": TOPIC_ARN,
        "Message": json.dumps(message),
        "SignatureVersion": "1",
        "Signature": "dGVzdA==",
        "SigningCertURL": "https://sns.ap-southeast-2.amazonaws.com/SimpleNotificationService-test.pem",
    }


@pytest.fixture()
def trusted_topic(monkeypatch):
    monkeypatch.setattr(settings, "sns_verify_signatures", False)
    monkeypatch.setattr(settings, "sns_allowed_topic_arns", [TOPIC_ARN])


def _post(client, payload):
    return client.post("/events/sns", content=json.dumps(payload), headers={"Content-Type": "text/plain"})


def test_verify_sns_signature_happy(monkeypatch):
    payload = _notification_payload({"notificationType": "Delivery", "mail": {"messageId": "mid"}})

    def fake_fetch(url, timeout_seconds):  # noqa: ARG001
        return b"cert"

    def fake_run(args, timeout_seconds):  # noqa: ARG001
        if "x509" in args:
            return SimpleNamespace(returncode=0, stdout=b"PUBKEY")
        return SimpleNamespace(returncode=0, stdout=b"")

    monkeypatch.setattr(sns_utils, "_fetch_url", fake_fetch)
    monkeypatch.setattr(sns_utils, "_run_openssl", fake_run)
    ok, _ = sns_utils.verify_sns_signature(payload, 3)
    assert ok is True


def test_verify_sns_signature_fail(monkeypatch):
    payload = _notification_payload({"notificationType": "Delivery", "mail": {"messageId": "mid"}})

    def fake_fetch(url, timeout_seconds):  # noqa: ARG001
        return b"cert"

    def fake_run(args, timeout_seconds):  # noqa: ARG001
        return SimpleNamespace(returncode=1, stdout=b"")

    monkeypatch.setattr(sns_utils, "_fetch_url", fake_fetch)
    monkeypatch.setattr(sns_utils, "_run_openssl", fake_run)
    ok, _ = sns_utils.verify_sns_signature(payload, 3)
    assert ok is False


def test_cert_url_must_be_amazon():
    assert sns_utils.is_allowed_cert_url("https://evil.example.com/SimpleNotificationService-x.pem")[0] is False
    assert sns_utils.is_allowed_cert_url("http://sns.us-east-1.amazonaws.com/SimpleNotificationService-x.pem")[0] is False


def test_parse_ses_message_maps_bounce_types():
    permanent = sns_utils.parse_ses_message(
        {"notificationType": "Bounce", "mail": {"messageId": "m1"}, "bounce": {"bounceType": "Permanent"}}
    )
    transient = sns_utils.parse_ses_message(
        {"eventType": "Bounce", "mail": {"messageId": "m2"}, "bounce": {"bounceType": "Transient"}}
    )

    assert (permanent.event_type, permanent.bounce_type) == ("bounced", "hard")
    assert transient.bounce_type == "soft"
    assert sns_utils.parse_ses_message({"notificationType": "Received", "mail": {"messageId": "m3"}}) is None


def test_subscription_confirmation(client, monkeypatch, trusted_topic):
    def fake_confirm(url, timeout_seconds):  # noqa: ARG001
        return True

    monkeypatch.setattr(events, "confirm_subscription", fake_confirm)

    payload = {
        "Type": "SubscriptionConfirmation",
        "MessageId": "sns-message-id",
        "TopicArn": TOPIC_ARN,
        "SubscribeURL": "https://sns.ap-southeast-2.amazonaws.com/confirm",
    }
    response = _post(client, payload)
    assert response.json()["status"] == "confirmed"


def test_unknown_topic_is_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "sns_allowed_topic_arns", [TOPIC_ARN])
    payload = _notification_payload({"notificationType": "Delivery", "mail": {"messageId": "mid"}})
    payload["TopicArn"] = "arn:aws:sns:us-east-1:999999999999:other"

    assert _post(client, payload).status_code == 403


def test_bad_signature_is_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "sns_verify_signatures", True)
    monkeypatch.setattr(settings, "sns_allowed_topic_arns", [TOPIC_ARN])
    monkeypatch.setattr(events, "verify_sns_signature", lambda payload, timeout: (False, "Signature verification failed"))

    payload = _notification_payload({"notificationType": "Delivery", "mail": {"messageId": "mid"}})
    assert _post(client, payload).status_code == 403


def test_invalid_json_is_400(client, trusted_topic):
    response = client.post("/events/sns", content="{not json", headers={"Content-Type": "text/plain"})
    assert response.status_code == 400


def test_bounce_notification_suppresses_recipient(client, db, tenant, make_campaign, start_campaign, trusted_topic):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]
    outcomes.apply_delivery_event(
        db, campaign_id=campaign.id, subscriber_id=ada.id, event_type="sent", message_id="ses-message-id"
    )

    message = {
        "notificationType": "Bounce",
        "mail": {"messageId": "ses-message-id", "destination": [ada.email]},
        "bounce": {"timestamp": "2025-12-16T00:00:00.000Z", "bounceType": "Permanent"},
    }
    response = _post(client, _notification_payload(message))
    replay = _post(client, _notification_payload(message))

    assert response.json()["status"] == "bounced"
    assert replay.json()["status"] == "duplicate"
    db.expire_all()
    record = outcomes.find_record(db, campaign.id, ada.id)
    assert record.bounce_type == "hard"
    assert db.get(models.Subscriber, ada.id).status == "bounced"
    assert suppression.is_suppressed(db, tenant.id, ada.email) is True


def test_event_without_matching_record_is_ignored(client, trusted_topic):
    message = {
        "notificationType": "Bounce",
        "mail": {"messageId": "missing-record"},
        "bounce": {"timestamp": "2025-12-16T00:00:00.000Z", "bounceType": "Permanent"},
    }
    response = _post(client, _notification_payload(message))
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
