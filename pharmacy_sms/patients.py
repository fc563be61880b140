"""
Inbound sender to patient resolution.

A patient is matched on the canonical form of their phone number. Creation is
an atomic "insert if absent, else fetch" keyed on the unique normalized phone,
so two near-simultaneous messages from a new sender resolve to one patient.
If the datastore refuses the patient entirely, a temporary identity is handed
back so the inbound message itself is still stored.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_sms.errors import DatastoreError
from pharmacy_sms.models import OutboundNumber, Patient
from pharmacy_sms.phone import normalize_phone, synthesize_patient_name
from pharmacy_sms.storage import new_id, utcnow

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass
class ResolvedPatient:
    patient_id: Optional[str]
    name: str
    created: bool = False
    temporary_id: Optional[str] = None

    @property
    def is_temporary(self) -> bool:
        return self.patient_id is None


def find_patient_by_phone(db: Session, raw_phone: Optional[str]) -> Optional[Patient]:
    normalized = normalize_phone(raw_phone)
    if not normalized:
        return None
    return db.query(Patient).filter(Patient.normalized_phone == normalized).first()


def _insert_if_absent(db: Session, values: dict) -> bool:
    """
    Insert a patient unless one with the same normalized phone exists.

    Returns True when this call created the row.
    """
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)

    if insert is not None:
        stmt = insert(Patient).values(**values).on_conflict_do_nothing(
            index_elements=["normalized_phone"]
        )
        result = db.execute(stmt)
        db.commit()
        return result.rowcount == 1

    # No native upsert: let the unique constraint arbitrate
    try:
        db.execute(Patient.__table__.insert().values(**values))
        db.commit()
        return True
    except IntegrityError:
        db.rollback()
        return False


def resolve_patient(
    db: Session,
    raw_phone: str,
    number: Optional[OutboundNumber] = None,
) -> ResolvedPatient:
    """
    Map an inbound sender's phone number to a patient, creating one if needed.

    Args:
        db: Database session
        raw_phone: Sender number as the carrier reported it
        number: Receiving number configuration, assigned to new patients

    Returns:
        ResolvedPatient. patient_id is None only when creation failed and a
        temporary identity was generated instead.

    Raises:
        DatastoreError: the existing-patient lookup itself failed
    """
    normalized = normalize_phone(raw_phone)
    name = synthesize_patient_name(raw_phone)

    try:
        existing = find_patient_by_phone(db, raw_phone)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error finding patient: {e}")
        raise DatastoreError("Database error") from e

    if existing is not None:
        logger.debug(f"Matched inbound sender to patient {existing.id}")
        return ResolvedPatient(patient_id=existing.id, name=existing.name)

    now = utcnow()
    values = {
        "id": new_id(),
        "name": name,
        "phone": raw_phone,
        "normalized_phone": normalized or None,
        "preferred_channel": "sms",
        "status": "active",
        "assigned_number_id": number.id if number is not None else None,
        "created_at": now,
        "updated_at": now,
    }

    try:
        if normalized:
            created = _insert_if_absent(db, values)
            patient = find_patient_by_phone(db, raw_phone)
        else:
            # Unusable number: nothing to key an upsert on, always a new patient
            db.execute(Patient.__table__.insert().values(**values))
            db.commit()
            created = True
            patient = db.get(Patient, values["id"])
    except SQLAlchemyError as e:
        db.rollback()
        temporary_id = f"temp-{uuid.uuid4()}"
        logger.error(
            f"Error creating patient for {raw_phone}, continuing with temporary identity "
            f"{temporary_id}: {e}"
        )
        return ResolvedPatient(patient_id=None, name=name, temporary_id=temporary_id)

    if patient is None:
        temporary_id = f"temp-{uuid.uuid4()}"
        logger.error(f"Patient for {raw_phone} vanished after upsert, using {temporary_id}")
        return ResolvedPatient(patient_id=None, name=name, temporary_id=temporary_id)

    if created:
        logger.info(f"Created patient {patient.id} for new sender")
    else:
        logger.info(f"Patient {patient.id} was created concurrently, reusing it")
    return ResolvedPatient(patient_id=patient.id, name=patient.name, created=created)
