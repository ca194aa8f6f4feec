"""Streamlit internal console: deliverability dashboard, campaigns and test sends."""
from __future__ import annotations

import os

import requests
import streamlit as st

STATUS_ICONS = {"pass": "✅", "warn": "⚠️", "fail": "❌"}


def api_url(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def _resolve_api_base() -> str:
    override = st.session_state.get("api_base_override", "").strip()
    if override:
        return override
    return os.getenv("API_BASE_URL", "http://127.0.0.1:8000").strip()


def tenant_headers(tenant_id: int) -> dict[str, str]:
    return {"X-Tenant-ID": str(tenant_id)}


def api_get(api_base: str, path: str, tenant_id: int):
    """GET a tenant-scoped resource; returns the JSON body or None after showing the error."""

    try:
        response = requests.get(api_url(api_base, path), headers=tenant_headers(tenant_id), timeout=10)
    except requests.RequestException as exc:
        st.error(f"Request failed: {exc}")
        return None
    if not response.ok:
        st.error(f"{path} failed ({response.status_code})")
        st.text(response.text)
        return None
    return response.json()


def render_dashboard(api_base: str, tenant_id: int) -> None:
    data = api_get(api_base, "/dashboard/", tenant_id)
    if data is None:
        return

    columns = st.columns(len(data["kpis"]) or 1)
    for column, kpi in zip(columns, data["kpis"]):
        column.metric(kpi["title"], kpi["value"], kpi["change"] if kpi["trend"] != "neutral" else None)

    st.subheader("Gmail spam rate")
    st.progress(min(data["gmailSpamRate"], 1.0), text=f"{data['gmailSpamRate'] * 100:.2f}%")

    st.subheader("Mailbox providers")
    st.dataframe(data["domainPerformance"], use_container_width=True)

    st.subheader("Compliance")
    for item in data["complianceChecklist"]:
        st.write(f"{STATUS_ICONS.get(item['status'], '')} **{item['name']}**: {item['details']}")


def render_campaigns(api_base: str, tenant_id: int) -> None:
    campaigns = api_get(api_base, "/campaigns/", tenant_id)
    if campaigns is None:
        return
    if not campaigns:
        st.info("No campaigns yet.")
        return

    st.dataframe(
        [{key: c[key] for key in ("id", "name", "status", "scheduled_at", "sent_at")} for c in campaigns],
        use_container_width=True,
    )
    options = {f"{c['name']} (#{c['id']})": c["id"] for c in campaigns}
    selected = st.selectbox("Campaign", list(options))
    report = api_get(api_base, f"/campaigns/{options[selected]}/analytics", tenant_id)
    if report is not None:
        st.json(report["counters"])
        st.write(report["rates"])
        if report["links"]:
            st.dataframe(report["links"], use_container_width=True)


def render_test_send(api_base: str, tenant_id: int) -> None:
    to_email = st.text_input("To", value="success@simulator.amazonses.com")
    subject = st.text_input("Subject", value="UI test")
    body = st.text_area("HTML body", value="<p>hello</p>", height=160)
    enqueue = st.checkbox("Enqueue (send via worker)", value=False)

    if st.button("Send"):
        if not to_email.strip() or not subject.strip():
            st.error("To and Subject are required.")
            return

        payload = {
            "recipient": to_email.strip(),
            "subject": subject.strip(),
            "html_body": body,
            "enqueue": enqueue,
        }
        try:
            response = requests.post(
                api_url(api_base, "/send/send-test"), json=payload, headers=tenant_headers(tenant_id), timeout=10
            )
        except requests.RequestException as exc:
            st.error(f"Request failed: {exc}")
            return

        st.write(f"HTTP {response.status_code}")
        try:
            data = response.json()
            st.json(data)
            if data.get("message_id"):
                st.success(f"Message ID: {data['message_id']}")
        except ValueError:
            st.write(response.text)


def main() -> None:
    st.set_page_config(page_title="Mailroom Console", layout="wide")
    st.title("Mailroom Console")

    api_base = _resolve_api_base()

    with st.sidebar:
        st.subheader("API Settings")
        st.text_input(
            "API base override",
            key="api_base_override",
            help="Optional override for the API base URL.",
        )
        st.caption(f"Resolved API base: {api_base}")
        tenant_id = int(st.number_input("Tenant ID", min_value=1, value=1, step=1))
        if st.button("Test API"):
            try:
                response = requests.get(api_url(api_base, "/health"), timeout=10)
                if response.ok:
                    st.success(f"API OK ({response.status_code})")
                else:
                    st.error(f"API check failed ({response.status_code})")
                    st.text(response.text)
            except requests.RequestException as exc:
                st.error(f"API check failed: {exc}")

    dashboard_tab, campaigns_tab, send_tab = st.tabs(["Dashboard", "Campaigns", "Test send"])
    with dashboard_tab:
        render_dashboard(api_base, tenant_id)
    with campaigns_tab:
        render_campaigns(api_base, tenant_id)
    with send_tab:
        render_test_send(api_base, tenant_id)


if __name__ == "__main__":
    main()
