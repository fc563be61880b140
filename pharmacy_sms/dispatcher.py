"""
Outbound message dispatch.

The message a send belongs to is identified explicitly: either the caller
passes the id of an existing outbound message, or the dispatcher creates the
record itself before talking to the carrier. The carrier's tracking id is then
written onto exactly that record.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_sms.errors import BadRequestError, DatastoreError, NotFoundError, ProviderError
from pharmacy_sms.models import Message, OutboundNumber, Patient
from pharmacy_sms.numbers import select_outbound_number
from pharmacy_sms.provider import SendResult, SmsProvider, build_status_callback_url
from pharmacy_sms.schemas import SendSmsRequest
from pharmacy_sms.storage import get_message_by_id

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    send: SendResult
    number: OutboundNumber
    message: Optional[Message] = None


def _validate(request: SendSmsRequest) -> None:
    missing = [name for name in ("to", "message") if not getattr(request, name)]
    if missing:
        logger.warning(f"Send request missing required fields: {missing}")
        raise BadRequestError("Missing required fields: to and message")


def _check_explicit_target(message: Message, request: SendSmsRequest) -> None:
    if message.direction != "outbound":
        raise BadRequestError(f"Message {message.id} is not an outbound message")
    if message.external_id:
        raise BadRequestError(
            f"Message {message.id} has already been sent",
            details={"external_id": message.external_id},
        )
    if request.patient_id and request.patient_id != message.patient_id:
        raise BadRequestError(f"Message {message.id} does not belong to patient {request.patient_id}")


def _resolve_target_message(
    db: Session,
    request: SendSmsRequest,
    number: OutboundNumber,
) -> Tuple[Optional[Message], bool]:
    """
    Find or create the outbound message record this send is for.

    Returns (message, created_here).
    """
    try:
        if request.message_id:
            message = get_message_by_id(db, request.message_id)
            if message is None:
                raise NotFoundError(f"Message not found: {request.message_id}")
            _check_explicit_target(message, request)
            return message, False

        if not request.patient_id:
            return None, False

        patient = db.get(Patient, request.patient_id)
        if patient is None:
            # Bulk sends pass synthetic patient ids; send without a record
            logger.info(f"Patient {request.patient_id} not found, sending untracked")
            return None, False

        message = Message(
            patient_id=patient.id,
            channel=number.channel or "sms",
            direction="outbound",
            content=request.message,
            status="queued",
            sender_name=number.label,
            outbound_number_id=number.id,
            meta={"to": request.to},
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.info(f"Created outbound message {message.id} for patient {patient.id}")
        return message, True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to prepare outbound message: {e}")
        raise DatastoreError("Failed to prepare outbound message") from e


def _record_rejection(db: Session, message: Message, error: ProviderError) -> None:
    meta = dict(message.meta or {})
    meta["provider_error"] = {"message": error.message, "details": error.details}
    message.meta = meta
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not record provider rejection on message {message.id}: {e}")


def _record_send(db: Session, message: Message, number: OutboundNumber, to: str, result: SendResult) -> None:
    meta = dict(message.meta or {})
    meta.update({
        "to": to,
        "phone_number_used": number.label,
        "provider_status": result.status,
    })
    message.external_id = result.sid
    message.status = "sent"
    message.outbound_number_id = number.id
    message.meta = meta

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"SMS {result.sid} sent but message {message.id} could not be updated: {e}")
        raise DatastoreError("SMS sent but message status could not be saved") from e


def dispatch_message(db: Session, provider: SmsProvider, request: SendSmsRequest) -> DispatchResult:
    """
    Send one SMS and attach the carrier tracking id to its message record.

    Args:
        db: Database session
        provider: Channel provider used for the network call
        request: Validated send request

    Returns:
        DispatchResult with the carrier result, the number used and the
        updated message (None for untracked sends)

    Raises:
        BadRequestError: `to` or `message` missing
        NumberNotFoundError / NoActiveNumbersError: no usable outbound number
        NotFoundError: explicit messageId unknown
        BadRequestError: explicit messageId is inbound, already sent or belongs to another patient
        ProviderError: carrier rejected or could not be reached
        ConfigurationError: carrier credentials missing
        DatastoreError: database read/write failed
    """
    _validate(request)

    number = select_outbound_number(db, request.phone_number_id)
    message, created_here = _resolve_target_message(db, request, number)

    logger.info(f"Dispatching SMS via {number.label}, record={message.id if message else None}")
    try:
        result = provider.send(
            number,
            to=request.to,
            body=request.message,
            status_callback=build_status_callback_url(number),
        )
    except ProviderError as e:
        # Caller-supplied records keep whatever state they had
        if created_here:
            _record_rejection(db, message, e)
        raise

    if message is not None:
        _record_send(db, message, number, request.to, result)

    return DispatchResult(send=result, number=number, message=message)
