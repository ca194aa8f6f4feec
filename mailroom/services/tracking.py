"""Personalise outgoing HTML and guard tracked redirects."""
from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass
from html import escape
from urllib.parse import urlparse

from mailroom.core.config import settings
from mailroom.db import models
from mailroom.services.template_engine import render_string
from mailroom.utils import tokens
from mailroom.utils.logger import logger

_LINK_RE = re.compile(r"""<a\s+([^>]*?\s*)href=(["'])([^"']+)\2([^>]*)>""", re.IGNORECASE)

BLOCKED_HOSTS = frozenset(
    {
        "localhost",
        "loopback",
        "0.0.0.0",
        "169.254.169.254",
        "metadata.google.internal",
        "instance-data.ec2.internal",
    }
)
BLOCKED_SUFFIXES = (".local", ".localhost", ".internal")


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str | None


def tracking_base() -> str:
    return settings.tracking_domain.rstrip("/")


def unsubscribe_url(subscriber: models.Subscriber, campaign_id: int | None = None) -> str:
    token = tokens.unsubscribe_token(subscriber.id, subscriber.tenant_id, campaign_id)
    return f"{tracking_base()}/unsubscribe/{token}"


def web_version_url(campaign: models.Campaign, subscriber: models.Subscriber) -> str:
    token = tokens.web_view_token(campaign.id, subscriber.id, campaign.tenant_id)
    return f"{tracking_base()}/view/{token}"


def merge_context(campaign: models.Campaign, subscriber: models.Subscriber) -> dict[str, str]:
    return {
        "first_name": subscriber.first_name or "",
        "last_name": subscriber.last_name or "",
        "email": subscriber.email,
        "campaign_name": campaign.name,
        "unsubscribe_url": unsubscribe_url(subscriber, campaign.id),
        "web_version_url": web_version_url(campaign, subscriber),
    }


def wrap_links(html: str, campaign_id: int, subscriber_id: int) -> str:
    """Route every http(s) link through the click tracker."""
    base = tracking_base()

    def _replace(match: re.Match) -> str:
        before, quote_char, url, after = match.groups()
        if not url.startswith(("http://", "https://")) or url.startswith(base):
            return match.group(0)
        token = tokens.click_token(campaign_id, subscriber_id, url)
        return f"<a {before}href={quote_char}{base}/track/click/{token}{quote_char}{after}>"

    return _LINK_RE.sub(_replace, html)


def inject_pixel(html: str, campaign_id: int, subscriber_id: int) -> str:
    token = tokens.open_token(campaign_id, subscriber_id)
    pixel = (
        f'<img src="{tracking_base()}/track/open/{escape(token)}" width="1" height="1" alt="" '
        'style="display:block;border:0;outline:none;" />'
    )
    if "</body>" in html:
        return html.replace("</body>", f"{pixel}\n</body>", 1)
    return f"{html}\n{pixel}"


def render_for_subscriber(
    campaign: models.Campaign,
    template: models.Template | None,
    subscriber: models.Subscriber,
    *,
    track: bool = True,
) -> RenderedEmail:
    """Merge-tag, link-wrap and pixel one campaign email for one recipient."""
    context = merge_context(campaign, subscriber)
    html_source = template.html_content if template is not None else ""
    text_source = template.text_content if template is not None else None

    subject = render_string(campaign.subject or (template.subject if template else ""), html=False, **context)
    html = render_string(html_source, **context)
    text = render_string(text_source, html=False, **context) if text_source else None
    if track:
        html = wrap_links(html, campaign.id, subscriber.id)
        html = inject_pixel(html, campaign.id, subscriber.id)
    return RenderedEmail(subject=subject, html=html, text=text)


def _is_private_ip(value: str) -> bool:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def _resolve(hostname: str) -> list[str]:
    infos = socket.getaddrinfo(hostname, None)
    return sorted({info[4][0] for info in infos})


def is_safe_redirect(url: str) -> tuple[bool, str]:
    """Refuse redirects to non-web schemes and to internal or private hosts."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False, "Invalid URL protocol"
    hostname = (parsed.hostname or "").lower()
    if not hostname:
        return False, "Invalid URL"
    if hostname in BLOCKED_HOSTS or hostname.endswith(BLOCKED_SUFFIXES) or _is_private_ip(hostname):
        logger.warning("Blocked redirect to internal URL %s", url)
        return False, "Blocked URL"
    try:
        addresses = _resolve(hostname)
    except OSError:
        logger.warning("DNS resolution failed for %s, blocking redirect", hostname)
        return False, "Blocked URL - DNS resolution failed"
    for address in addresses:
        if _is_private_ip(address.split("%", 1)[0]):
            logger.warning("Blocked redirect: %s resolves to private address %s", hostname, address)
            return False, "Blocked URL - resolves to private network"
    return True, "ok"
