"""
Delivery status tracking.

Carrier status callbacks are correlated to messages purely by tracking id.
Applying the same callback again converges to the same message state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_sms.errors import BadRequestError, DatastoreError
from pharmacy_sms.models import Message
from pharmacy_sms.numbers import find_number_by_phone
from pharmacy_sms.schemas import DeliveryStatusForm
from pharmacy_sms.storage import utcnow

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "queued": "sending",
    "accepted": "sending",
    "sending": "sending",
    "sent": "sent",
    "delivered": "delivered",
    "undelivered": "failed",
    "failed": "failed",
}


def map_provider_status(provider_status: str) -> str:
    """Translate a carrier status to the internal one; unknown values pass through lower-cased."""
    lowered = provider_status.lower()
    return STATUS_MAP.get(lowered, lowered)


@dataclass
class StatusUpdateResult:
    message_sid: str
    provider_status: str
    status: str
    matched: int

    @property
    def found(self) -> bool:
        return self.matched > 0


def apply_status_update(db: Session, callback: DeliveryStatusForm) -> StatusUpdateResult:
    """
    Advance the lifecycle of the message(s) carrying the callback's tracking id.

    Raises:
        BadRequestError: MessageSid or MessageStatus missing
        DatastoreError: read/write failure
    """
    provider_status = callback.status
    message_sid = callback.message_sid
    if not provider_status or not message_sid:
        logger.warning(
            "Status callback missing required fields",
            extra={"message_status": bool(provider_status), "message_sid": bool(message_sid)},
        )
        raise BadRequestError("Missing required fields")

    internal_status = map_provider_status(provider_status)

    try:
        number = find_number_by_phone(db, callback.from_number)
        phone_number_used = number.label if number is not None else callback.from_number

        messages = db.query(Message).filter(Message.external_id == message_sid).all()
        if not messages:
            # The callback may precede the send being recorded, or belong elsewhere
            logger.warning(f"No message found with external_id: {message_sid}")
            return StatusUpdateResult(message_sid, provider_status, internal_status, matched=0)

        logger.info(f"Updating message {message_sid} status from {provider_status} to {internal_status}")
        for message in messages:
            message.status = internal_status
            if internal_status == "delivered":
                message.delivered_at = message.delivered_at or utcnow()
            else:
                message.delivered_at = None
            message.error_code = callback.error_code or None

            meta = dict(message.meta or {})
            meta.update({
                "provider_status": provider_status,
                "error_code": callback.error_code or None,
                "error_message": callback.error_message or None,
                "phone_number_used": phone_number_used,
            })
            message.meta = meta

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating message status: {e}")
        raise DatastoreError("Database error") from e

    return StatusUpdateResult(message_sid, provider_status, internal_status, matched=len(messages))
