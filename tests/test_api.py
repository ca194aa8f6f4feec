"""HTTP surface: tenant header, error mapping and the main resource routes."""
from __future__ import annotations

import pytest
from sqlalchemy import select

from mailroom.api.routes import public
from mailroom.core.rate_limit import create_rate_limiter
from mailroom.core.security import pwd_context
from mailroom.db import models
from mailroom.services import campaigns, notifications


def _headers(tenant):
    return {"X-Tenant-ID": str(tenant.id)}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_tenant(client, db):
    response = client.post(
        "/tenants/",
        json={"email": "owner@globex.example.com", "password": "long-enough", "name": "Globex"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Globex"
    assert body["role"] == "user"
    assert "password" not in body
    stored = db.get(models.Tenant, body["id"])
    assert stored.password_hash != "long-enough"
    assert pwd_context.verify("long-enough", stored.password_hash)


def test_tenant_header_is_required(client, tenant):
    assert client.get("/lists/").status_code == 422
    missing = client.get("/lists/", headers={"X-Tenant-ID": "999999"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFound"


def test_subscriber_crud(client, db, tenant):
    headers = _headers(tenant)
    newsletter = client.post("/lists/", json={"name": "Newsletter"}, headers=headers).json()

    created = client.post(
        "/subscribers/",
        json={"email": "Ada@Example.com", "first_name": "Ada", "list_ids": [newsletter["id"]]},
        headers=headers,
    )
    assert created.status_code == 201
    sub = created.json()
    assert sub["email"] == "ada@example.com"
    assert sub["list_ids"] == [newsletter["id"]]

    updated = client.patch(
        f"/subscribers/{sub['id']}", json={"metadata": {"plan": "pro"}}, headers=headers
    ).json()
    assert updated["metadata"] == {"plan": "pro"}

    listing = client.get(f"/lists/{newsletter['id']}", headers=headers).json()
    assert listing["subscriber_count"] == 1

    assert client.delete(f"/subscribers/{sub['id']}", headers=headers).status_code == 204
    assert client.get(f"/subscribers/{sub['id']}", headers=headers).status_code == 404
    assert client.get(f"/lists/{newsletter['id']}", headers=headers).json()["subscriber_count"] == 0


def test_duplicate_subscriber_is_conflict(client, tenant):
    headers = _headers(tenant)
    client.post("/subscribers/", json={"email": "ada@example.com"}, headers=headers)

    response = client.post("/subscribers/", json={"email": "ADA@example.com"}, headers=headers)

    assert response.status_code == 409
    assert response.json()["error"] == "ConstraintViolation"


def test_foreign_list_is_forbidden(client, make_tenant):
    acme, globex = make_tenant("Acme"), make_tenant("Globex")
    foreign = client.post("/lists/", json={"name": "Theirs"}, headers=_headers(globex)).json()

    response = client.post(
        "/subscribers/", json={"email": "a@example.com", "list_ids": [foreign["id"]]}, headers=_headers(acme)
    )

    assert response.status_code == 403
    assert response.json()["error"] == "TenantMismatch"


def test_other_tenants_rows_are_invisible(client, make_tenant):
    acme, globex = make_tenant("Acme"), make_tenant("Globex")
    theirs = client.post("/subscribers/", json={"email": "x@example.com"}, headers=_headers(globex)).json()

    assert client.get(f"/subscribers/{theirs['id']}", headers=_headers(acme)).status_code == 404
    assert client.get("/subscribers/", headers=_headers(acme)).json() == []


def test_bulk_import(client, tenant):
    headers = _headers(tenant)
    client.post("/subscribers/", json={"email": "old@example.com"}, headers=headers)
    csv_text = "email,first_name\nnew@example.com,New\nold@example.com,Old\nnot-an-email,\nnew@example.com,Again\n"

    response = client.post("/subscribers/bulk-import", json={"csv_text": csv_text}, headers=headers)

    assert response.json() == {"imported": 1, "skipped": 3}
    emails = sorted(s["email"] for s in client.get("/subscribers/", headers=headers).json())
    assert emails == ["new@example.com", "old@example.com"]


def test_bulk_import_needs_email_column(client, tenant):
    response = client.post("/subscribers/bulk-import", json={"csv_text": "name\nAda\n"}, headers=_headers(tenant))
    assert response.status_code == 409


def test_campaign_send_now_and_analytics(client, db, tenant, make_campaign, outbox):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com"))
    headers = _headers(tenant)

    sent = client.post(f"/campaigns/{built.campaign.id}/send-now", headers=headers)

    assert sent.status_code == 200
    body = sent.json()
    assert body["campaign"]["status"] == "sending"
    assert body["fan_out"]["enrolled"] == 2
    assert body["enqueued"] == 2
    assert len(outbox.deliveries) == 2

    first = built.subscribers[0]
    event = client.post(
        "/events/delivery",
        json={"campaign_id": built.campaign.id, "subscriber_id": first.id, "event_type": "opened"},
        headers=headers,
    )
    replay = client.post(
        "/events/delivery",
        json={"campaign_id": built.campaign.id, "subscriber_id": first.id, "event_type": "opened"},
        headers=headers,
    )
    assert event.json()["applied"] is True
    assert replay.json()["applied"] is False

    report = client.get(f"/campaigns/{built.campaign.id}/analytics", headers=headers).json()
    assert report["counters"]["total_subscribers"] == 2
    assert report["counters"]["opened"] == 1
    recomputed = client.get(f"/campaigns/{built.campaign.id}/analytics/recompute", headers=headers).json()
    assert recomputed == report["counters"]

    deliveries = client.get(f"/campaigns/{built.campaign.id}/deliveries", headers=headers).json()
    assert sorted(d["status"] for d in deliveries) == ["opened", "pending"]


def test_invalid_transition_is_conflict(client, tenant, make_campaign):
    built = make_campaign(tenant)

    response = client.post(f"/campaigns/{built.campaign.id}/pause", headers=_headers(tenant))

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"


def test_unknown_event_type_is_rejected(client, tenant, make_campaign):
    built = make_campaign(tenant)
    response = client.post(
        "/events/delivery",
        json={"campaign_id": built.campaign.id, "subscriber_id": built.subscribers[0].id, "event_type": "exploded"},
        headers=_headers(tenant),
    )
    assert response.status_code == 422


def test_template_preview_and_duplicate(client, tenant):
    headers = _headers(tenant)
    template = client.post(
        "/templates/",
        json={"name": "Welcome", "subject": "Hi {{ first_name }}", "html_content": "<p>Hello {{ first_name }}</p>"},
        headers=headers,
    ).json()

    preview = client.get(f"/templates/{template['id']}/preview", headers=headers).json()
    first_copy = client.post(f"/templates/{template['id']}/duplicate", headers=headers).json()
    second_copy = client.post(f"/templates/{template['id']}/duplicate", headers=headers).json()

    assert preview == {"subject": "Hi Ada", "html": "<p>Hello Ada</p>"}
    assert first_copy["name"] == "Welcome (Copy)"
    assert second_copy["name"] == "Welcome (Copy 2)"


def test_suppression_routes(client, tenant):
    headers = _headers(tenant)

    created = client.post("/suppression/", json={"domain": "Blocked.test"}, headers=headers)

    assert created.status_code == 201
    assert created.json()["domain"] == "blocked.test"
    check = client.get("/suppression/check", params={"email": "x@mail.blocked.test"}, headers=headers).json()
    assert check["suppressed"] is True
    assert client.delete(f"/suppression/{created.json()['id']}", headers=headers).status_code == 204
    check = client.get("/suppression/check", params={"email": "x@mail.blocked.test"}, headers=headers).json()
    assert check["suppressed"] is False


def test_domain_suppression_applies_to_send(client, tenant, make_campaign, outbox):
    headers = _headers(tenant)
    built = make_campaign(tenant, emails=("ok@example.com",))
    client.post("/suppression/", json={"domain": "bounced.example.net"}, headers=headers)
    for email in ("late@bounced.example.net", "deep@mx.bounced.example.net", "near@notbounced.example.net"):
        created = client.post("/subscribers/", json={"email": email, "list_ids": [built.list.id]}, headers=headers)
        assert created.status_code == 201

    sent = client.post(f"/campaigns/{built.campaign.id}/send-now", headers=headers).json()

    assert sent["fan_out"]["enrolled"] == 2
    assert sent["fan_out"]["suppressed"] == 2
    assert len(outbox.deliveries) == 2


def test_automation_routes(client, tenant):
    headers = _headers(tenant)
    welcome = client.post("/lists/", json={"name": "Welcome"}, headers=headers).json()

    created = client.post(
        "/automations/",
        json={
            "name": "Welcome list",
            "trigger": {"type": "subscriber_created"},
            "action": {"type": "add_to_list", "list_id": welcome["id"]},
        },
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["action"] == {"type": "add_to_list", "list_id": welcome["id"]}

    sub = client.post("/subscribers/", json={"email": "new@example.com"}, headers=headers).json()
    assert sub["list_ids"] == [welcome["id"]]

    bad = client.post(
        "/automations/",
        json={"name": "Bad", "trigger": {"type": "birthday"}, "action": {"type": "add_to_list", "list_id": 1}},
        headers=headers,
    )
    assert bad.status_code == 422

    rule_id = created.json()["id"]
    assert client.patch(f"/automations/{rule_id}", json={"is_active": False}, headers=headers).json()["is_active"] is False
    assert client.delete(f"/automations/{rule_id}", headers=headers).status_code == 204
    assert client.get("/automations/", headers=headers).json() == []


def test_notification_routes(client, db, tenant):
    headers = _headers(tenant)
    first = notifications.stage_notification(db, tenant.id, "info", "one")
    notifications.stage_notification(db, tenant.id, "info", "two")
    db.commit()

    assert client.get("/notifications/unread-count", headers=headers).json() == {"unread": 2}
    read = client.post(f"/notifications/{first.id}/read", headers=headers).json()
    assert read["read"] is True
    assert len(client.get("/notifications/", params={"unread_only": True}, headers=headers).json()) == 1
    assert client.post("/notifications/read-all", headers=headers).json() == {"updated": 1}
    assert client.get("/notifications/unread-count", headers=headers).json() == {"unread": 0}


def test_public_subscribe_and_confirm(client, db, tenant, outbox):
    newsletter = client.post("/lists/", json={"name": "Newsletter"}, headers=_headers(tenant)).json()
    payload = {"tenant_id": tenant.id, "email": "reader@example.com", "list_ids": [newsletter["id"]]}

    response = client.post("/public/subscribe", json=payload)

    assert response.status_code == 202
    assert response.json()["status"] == "confirmation_sent"
    assert len(outbox.emails) == 1
    assert outbox.emails[0]["recipient"] == "reader@example.com"
    assert "/public/confirm/" in outbox.emails[0]["html_body"]

    db.expire_all()
    subscriber = db.execute(
        select(models.Subscriber).where(models.Subscriber.email == "reader@example.com")
    ).scalar_one()
    assert subscriber.confirmed is False

    page = client.get(f"/public/confirm/{subscriber.confirmation_token}")
    assert page.status_code == 200

    db.expire_all()
    assert db.get(models.Subscriber, subscriber.id).confirmed is True
    again = client.post("/public/subscribe", json=payload).json()
    assert again["status"] == "already_confirmed"


def test_public_confirm_unknown_token(client):
    assert client.get("/public/confirm/nope").status_code == 404


def test_public_subscribe_unknown_tenant(client):
    response = client.post("/public/subscribe", json={"tenant_id": 999999, "email": "a@example.com"})
    assert response.status_code == 404


def test_public_subscribe_is_rate_limited(client, tenant, monkeypatch):
    monkeypatch.setattr(public, "rate_limiter", create_rate_limiter(2))
    payload = {"tenant_id": tenant.id, "email": "reader@example.com"}

    codes = [client.post("/public/subscribe", json=payload).status_code for _ in range(3)]

    assert codes == [202, 202, 429]


@pytest.mark.parametrize("path", ["/dashboard/", "/dashboard/kpis", "/dashboard/compliance"])
def test_dashboard_routes_need_tenant(client, path):
    assert client.get(path).status_code == 422


def test_admin_run_campaign_and_repair(client, db, tenant, make_campaign, outbox):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com"))
    campaigns.schedule_campaign(db, tenant.id, built.campaign.id)

    run = client.post(f"/admin/run-campaign/{built.campaign.id}").json()

    assert run == {"campaign_id": built.campaign.id, "enqueued": 2}
    assert len(outbox.deliveries) == 2
    assert client.post("/admin/repair-analytics").json() == {"repaired": []}
