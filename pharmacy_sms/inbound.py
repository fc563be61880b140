"""
Inbound message ingestion.

Storing the message outranks completing its metadata: an unknown receiving
number or a patient that cannot be created does not stop the message from
being persisted.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from pharmacy_sms.dispatcher import dispatch_message
from pharmacy_sms.errors import BadRequestError, PipelineError
from pharmacy_sms.models import Message, OutboundNumber
from pharmacy_sms.numbers import find_number_by_phone
from pharmacy_sms.patients import ResolvedPatient, resolve_patient
from pharmacy_sms.provider import SmsProvider
from pharmacy_sms.schemas import InboundSmsForm, SendSmsRequest
from pharmacy_sms.storage import SessionLocal, create_message

logger = logging.getLogger(__name__)


@dataclass
class AutoResponse:
    to: str
    text: str
    number_id: str
    patient_id: Optional[str]


@dataclass
class InboundResult:
    message: Optional[Message]
    patient: Optional[ResolvedPatient]
    duplicate: bool = False
    auto_response: Optional[AutoResponse] = None


def _auto_response_for(number: Optional[OutboundNumber], form: InboundSmsForm, patient: ResolvedPatient):
    if number is None or not number.auto_response_enabled or not number.auto_response_text:
        return None
    return AutoResponse(
        to=form.from_number,
        text=number.auto_response_text,
        number_id=number.id,
        patient_id=patient.patient_id,
    )


def ingest_inbound_message(db: Session, form: InboundSmsForm) -> InboundResult:
    """
    Persist a message received by one of our numbers.

    Args:
        db: Database session
        form: Carrier callback fields

    Returns:
        InboundResult with the stored message, the resolved patient and the
        auto-response to schedule, if any. Redelivered callbacks return
        duplicate=True and store nothing.

    Raises:
        BadRequestError: From, Body or To missing
        DatastoreError: the message could not be stored
    """
    missing = [
        name
        for name, value in [("From", form.from_number), ("Body", form.body), ("To", form.to_number)]
        if not value
    ]
    if missing:
        logger.warning(f"Inbound message missing required fields: {missing}")
        raise BadRequestError("Missing required fields", details={"missing": missing})

    number = find_number_by_phone(db, form.to_number)
    if number is None:
        logger.warning(f"No active phone number configuration for {form.to_number}, storing without it")

    patient = resolve_patient(db, form.from_number, number)

    meta = {"phone_number_used": number.label if number is not None else form.to_number}
    if patient.is_temporary:
        meta["temporary_patient_id"] = patient.temporary_id

    message, duplicate = create_message(
        db,
        patient_id=patient.patient_id,
        channel=number.channel if number is not None else "sms",
        direction="inbound",
        content=form.body,
        status="received",
        sender_name=patient.name,
        external_id=form.message_sid or None,
        outbound_number_id=number.id if number is not None else None,
        meta=meta,
    )

    if duplicate:
        return InboundResult(message=None, patient=patient, duplicate=True)

    return InboundResult(
        message=message,
        patient=patient,
        auto_response=_auto_response_for(number, form, patient),
    )


def send_auto_response(reply: AutoResponse, provider: SmsProvider) -> None:
    """
    Background task: deliver a configured auto-response as its own outbound send.

    Runs after the webhook has been acknowledged, in a fresh session.
    """
    db = SessionLocal()
    try:
        request = SendSmsRequest(
            to=reply.to,
            message=reply.text,
            patient_id=reply.patient_id,
            phone_number_id=reply.number_id,
        )
        result = dispatch_message(db, provider, request)
        logger.info(f"Auto-response sent to {reply.to}, SID: {result.send.sid}")
    except PipelineError as e:
        logger.error(f"Auto-response to {reply.to} failed: {e.message}", extra={"details": e.details})
    finally:
        db.close()
