"""SNS helpers: signature verification, subscription confirmation and SES payload parsing."""
from __future__ import annotations

import base64
import json
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from mailroom.utils.logger import logger

# SES notificationType / eventType -> delivery event
SES_EVENT_TYPES = {
    "send": "sent",
    "delivery": "delivered",
    "bounce": "bounced",
    "complaint": "complained",
    "open": "opened",
    "click": "clicked",
    "reject": "failed",
    "renderingfailure": "failed",
}
SES_BOUNCE_TYPES = {"permanent": "hard", "transient": "soft", "undetermined": "undetermined"}


@dataclass
class SesEvent:
    message_id: str
    event_type: str
    bounce_type: str | None = None
    occurred_at: datetime | None = None


def is_allowed_cert_url(cert_url: str) -> tuple[bool, str]:
    """Validate SNS SigningCertURL host and path."""
    parsed = urlparse(cert_url)
    if parsed.scheme != "https":
        return False, "SigningCertURL must use https"
    if not parsed.hostname:
        return False, "SigningCertURL missing hostname"
    host = parsed.hostname
    if host != "sns.amazonaws.com" and not (host.startswith("sns.") and host.endswith(".amazonaws.com")):
        return False, "SigningCertURL hostname is not allowed"
    if not parsed.path.startswith("/SimpleNotificationService-"):
        return False, "SigningCertURL path is not allowed"
    return True, "ok"


def _build_string_to_sign(payload: dict[str, Any]) -> str:
    if payload.get("Type") == "Notification":
        fields = ["Message", "MessageId", "Subject", "Timestamp", "TopicArn", "Type"]
    else:
        fields = ["Message", "MessageId", "SubscribeURL", "Timestamp", "Token", "TopicArn", "Type"]

    parts: list[str] = []
    for field in fields:
        value = payload.get(field)
        if value is None:
            continue
        parts.append(field)
        parts.append(str(value))
    return "\n".join(parts) + "\n"


def _fetch_url(url: str, timeout_seconds: int) -> bytes:
    request = Request(url, method="GET")
    with urlopen(request, timeout=timeout_seconds) as response:
        return response.read()


def _run_openssl(args: list[str], timeout_seconds: int) -> subprocess.CompletedProcess:
    return subprocess.run(args, capture_output=True, check=False, timeout=timeout_seconds)


def verify_sns_signature(payload: dict[str, Any], timeout_seconds: int) -> tuple[bool, str]:
    """Verify an SNS message (SignatureVersion 1 = SHA1, 2 = SHA256) against its signing cert."""
    signature_b64 = payload.get("Signature")
    cert_url = payload.get("SigningCertURL")
    digest = {"1": "-sha1", "2": "-sha256"}.get(str(payload.get("SignatureVersion")))
    if digest is None:
        return False, "Unsupported SignatureVersion"
    if not signature_b64 or not cert_url:
        return False, "Missing Signature or SigningCertURL"

    allowed, reason = is_allowed_cert_url(cert_url)
    if not allowed:
        return False, reason

    try:
        cert_pem = _fetch_url(cert_url, timeout_seconds)
    except OSError as exc:
        logger.warning("Failed to fetch SNS cert: %s", exc)
        return False, "Failed to fetch SigningCertURL"

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except ValueError:
        return False, "Invalid Signature encoding"

    data_to_sign = _build_string_to_sign(payload).encode("utf-8")

    try:
        with tempfile.NamedTemporaryFile() as cert_file, tempfile.NamedTemporaryFile() as pubkey_file, tempfile.NamedTemporaryFile() as data_file, tempfile.NamedTemporaryFile() as sig_file:
            cert_file.write(cert_pem)
            cert_file.flush()
            pubkey_result = _run_openssl(
                ["openssl", "x509", "-pubkey", "-noout", "-in", cert_file.name], timeout_seconds
            )
            if pubkey_result.returncode != 0:
                return False, "Failed to extract public key"
            pubkey_file.write(pubkey_result.stdout)
            pubkey_file.flush()
            data_file.write(data_to_sign)
            data_file.flush()
            sig_file.write(signature)
            sig_file.flush()

            verify_result = _run_openssl(
                ["openssl", "dgst", digest, "-verify", pubkey_file.name, "-signature", sig_file.name, data_file.name],
                timeout_seconds,
            )
            if verify_result.returncode != 0:
                return False, "Signature verification failed"
    except FileNotFoundError:
        return False, "openssl is not available for signature verification"
    except subprocess.TimeoutExpired:
        return False, "Signature verification timed out"

    return True, "ok"


def confirm_subscription(subscribe_url: str, timeout_seconds: int) -> bool:
    parsed = urlparse(subscribe_url)
    if parsed.scheme != "https" or not (parsed.hostname or "").endswith(".amazonaws.com"):
        logger.warning("Refusing SNS SubscribeURL %s", subscribe_url)
        return False
    try:
        _fetch_url(subscribe_url, timeout_seconds)
        return True
    except OSError as exc:
        logger.warning("Failed to confirm SNS subscription: %s", exc)
        return False


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_ses_message(message: dict[str, Any]) -> SesEvent | None:
    """Map an SES notification (or event-publishing record) to a delivery event."""
    kind = (message.get("notificationType") or message.get("eventType") or "").lower()
    event_type = SES_EVENT_TYPES.get(kind)
    mail = message.get("mail") or {}
    message_id = mail.get("messageId")
    if event_type is None or not message_id:
        return None

    detail = message.get(kind) or {}
    bounce_type = None
    if event_type == "bounced":
        bounce_type = SES_BOUNCE_TYPES.get(str(detail.get("bounceType", "")).lower(), "hard")
    occurred_at = _parse_timestamp(detail.get("timestamp") or mail.get("timestamp"))
    return SesEvent(message_id=message_id, event_type=event_type, bounce_type=bounce_type, occurred_at=occurred_at)


def dumps_payload(payload: dict[str, Any], max_bytes: int = 32768) -> str:
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    if len(raw) > max_bytes:
        return raw[:max_bytes]
    return raw
