"""Signed tokens embedded in tracking, unsubscribe and web-version links.

Each token is an HS256 JWT whose ``kind`` claim names the link type and
whose ``ids`` claim carries the referenced ids (and, for clicks, the URL).
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from mailroom.core.config import settings
from mailroom.utils.logger import logger

ALGORITHM = "HS256"

_secret: str | None = None


def get_tracking_secret() -> str:
    global _secret
    if _secret is None:
        if settings.tracking_secret:
            _secret = settings.tracking_secret
        else:
            logger.warning(
                "TRACKING_SECRET is not set; using a random secret. Links will stop working after a restart."
            )
            _secret = secrets.token_hex(32)
    return _secret


def set_tracking_secret(secret: str | None) -> None:
    global _secret
    _secret = secret


def sign_fields(kind: str, *fields: Any, expires_delta: timedelta | None = None, secret: str | None = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=settings.tracking_token_ttl_days)
    claims = {"kind": kind, "ids": list(fields), "exp": datetime.now(timezone.utc) + expires_delta}
    return jwt.encode(claims, secret or get_tracking_secret(), algorithm=ALGORITHM)


def verify_fields(token: str, kind: str, expected_fields: int, secret: str | None = None) -> list[Any] | None:
    """Return the signed fields, or ``None`` if the token is bad in any way."""
    try:
        claims = jwt.decode(token, secret or get_tracking_secret(), algorithms=[ALGORITHM])
    except JWTError:
        return None
    fields = claims.get("ids")
    if claims.get("kind") != kind or not isinstance(fields, list) or len(fields) != expected_fields:
        return None
    return fields


def _ints(values: list[Any] | None, count: int) -> list[int] | None:
    if values is None:
        return None
    head = values[:count]
    if not all(isinstance(value, int) and not isinstance(value, bool) for value in head):
        return None
    return head


@dataclass(frozen=True)
class OpenToken:
    campaign_id: int
    subscriber_id: int


@dataclass(frozen=True)
class ClickToken:
    campaign_id: int
    subscriber_id: int
    url: str


@dataclass(frozen=True)
class UnsubscribeToken:
    subscriber_id: int
    tenant_id: int
    campaign_id: int | None = None


@dataclass(frozen=True)
class WebViewToken:
    campaign_id: int
    subscriber_id: int
    tenant_id: int


def open_token(campaign_id: int, subscriber_id: int) -> str:
    return sign_fields("open", campaign_id, subscriber_id)


def click_token(campaign_id: int, subscriber_id: int, url: str) -> str:
    return sign_fields("click", campaign_id, subscriber_id, url)


def unsubscribe_token(subscriber_id: int, tenant_id: int, campaign_id: int | None = None) -> str:
    return sign_fields("unsubscribe", subscriber_id, tenant_id, campaign_id)


def web_view_token(campaign_id: int, subscriber_id: int, tenant_id: int) -> str:
    return sign_fields("view", campaign_id, subscriber_id, tenant_id)


def decode_open(token: str) -> OpenToken | None:
    ids = _ints(verify_fields(token, "open", 2), 2)
    return OpenToken(*ids) if ids else None


def decode_click(token: str) -> ClickToken | None:
    fields = verify_fields(token, "click", 3)
    ids = _ints(fields, 2)
    if not ids or not isinstance(fields[2], str) or not fields[2]:
        return None
    return ClickToken(ids[0], ids[1], fields[2])


def decode_unsubscribe(token: str) -> UnsubscribeToken | None:
    fields = verify_fields(token, "unsubscribe", 3)
    ids = _ints(fields, 2)
    if not ids:
        return None
    campaign = fields[2]
    if campaign is not None and (not isinstance(campaign, int) or isinstance(campaign, bool)):
        return None
    return UnsubscribeToken(ids[0], ids[1], campaign)


def decode_web_view(token: str) -> WebViewToken | None:
    ids = _ints(verify_fields(token, "view", 3), 3)
    return WebViewToken(*ids) if ids else None
