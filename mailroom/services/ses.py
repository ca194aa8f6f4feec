"""AWS SES helper functions."""
from __future__ import annotations

from email.utils import formataddr
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mailroom.core.config import settings
from mailroom.utils.logger import logger


class SESSendError(RuntimeError):
    """SES rejected the message or could not be reached."""


class SESService:
    """Encapsulates the boto3 SES client. Credentials come only from process settings."""

    def __init__(self, region_name: str | None = None) -> None:
        self.region_name = region_name or settings.aws_region_name
        self._client = None

    def _client_or_raise(self):
        if self._client is None:
            if not self.region_name:
                raise RuntimeError("AWS region is required for SES. Set AWS_REGION_NAME in the environment.")

            client_kwargs = {"region_name": self.region_name}
            if settings.aws_access_key_id and settings.aws_secret_access_key:
                client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
                client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

            self._client = boto3.client("ses", **client_kwargs)
        return self._client

    def send_email(
        self,
        *,
        subject: str,
        recipient: str,
        html_body: str,
        text_body: Optional[str] = None,
        sender: Optional[str] = None,
        sender_name: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> str:
        """Send an email and return the SES message ID."""

        source = formataddr((sender_name or settings.default_sender_name, sender or settings.default_sender_email))
        body = {"Html": {"Data": html_body, "Charset": "UTF-8"}}
        if text_body:
            body["Text"] = {"Data": text_body, "Charset": "UTF-8"}
        kwargs = {
            "Source": source,
            "Destination": {"ToAddresses": [recipient]},
            "Message": {"Subject": {"Data": subject, "Charset": "UTF-8"}, "Body": body},
        }
        if reply_to:
            kwargs["ReplyToAddresses"] = [reply_to]

        client = self._client_or_raise()
        try:
            response = client.send_email(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to send email via SES to %s", recipient)
            raise SESSendError("SES send_email failed") from exc

        message_id = response.get("MessageId", "")
        logger.info("SES send_email message_id=%s", message_id)
        return message_id

    def verify_domain_identity(self, domain: str) -> str:
        """Start SES domain verification and return the TXT verification token."""

        client = self._client_or_raise()
        try:
            response = client.verify_domain_identity(Domain=domain)
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to start SES verification for %s", domain)
            raise SESSendError("SES verify_domain_identity failed") from exc
        return response["VerificationToken"]

    def identity_verified(self, identity: str) -> bool:
        client = self._client_or_raise()
        try:
            response = client.get_identity_verification_attributes(Identities=[identity])
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to read SES verification status for %s", identity)
            raise SESSendError("SES get_identity_verification_attributes failed") from exc
        attributes = response.get("VerificationAttributes", {}).get(identity, {})
        return attributes.get("VerificationStatus") == "Success"


ses_service = SESService()
