"""Feed SES bounce, complaint and delivery notifications into the outcome path."""
from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.orm import Session

from mailroom.services.outcomes import OutcomeResult, apply_provider_event
from mailroom.utils.logger import logger
from mailroom.utils.sns import parse_ses_message


def handle_ses_message(db: Session, message: Dict[str, Any]) -> OutcomeResult | None:
    """Apply one decoded SES notification. Unknown kinds and ids are logged and ignored."""

    event = parse_ses_message(message)
    if event is None:
        logger.warning("Ignoring SES notification of type %s", message.get("notificationType") or message.get("eventType"))
        return None
    return apply_provider_event(
        db,
        message_id=event.message_id,
        event_type=event.event_type,
        occurred_at=event.occurred_at,
        bounce_type=event.bounce_type,
    )
