"""
Outbound number selection.

Configurations are read fresh on every call so administrative changes are
visible to the next send without any cache invalidation.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_sms.errors import DatastoreError, NoActiveNumbersError, NumberNotFoundError
from pharmacy_sms.models import OutboundNumber
from pharmacy_sms.phone import normalize_phone, same_identity

logger = logging.getLogger(__name__)


def select_outbound_number(db: Session, phone_number_id: Optional[str] = None) -> OutboundNumber:
    """
    Choose the number/credential pair to send from.

    Args:
        db: Database session
        phone_number_id: Explicit configuration id. When omitted the active
            primary number wins, then the oldest active number.

    Returns:
        The selected OutboundNumber

    Raises:
        NumberNotFoundError: explicit id is unknown or inactive
        NoActiveNumbersError: no active number exists
        DatastoreError: the lookup failed
    """
    try:
        if phone_number_id:
            number = (
                db.query(OutboundNumber)
                .filter(OutboundNumber.id == phone_number_id, OutboundNumber.is_active.is_(True))
                .first()
            )
            if number is None:
                logger.warning(f"Outbound number not found or inactive: {phone_number_id}")
                raise NumberNotFoundError(f"Phone number not found or inactive: {phone_number_id}")
        else:
            number = (
                db.query(OutboundNumber)
                .filter(OutboundNumber.is_active.is_(True))
                .order_by(OutboundNumber.is_primary.desc(), OutboundNumber.created_at.asc())
                .first()
            )
            if number is None:
                logger.warning("No active outbound numbers configured")
                raise NoActiveNumbersError("No active phone numbers configured")
    except SQLAlchemyError as e:
        logger.error(f"Failed to load outbound numbers: {e}")
        raise DatastoreError("Failed to load phone number configuration") from e

    logger.debug(f"Selected outbound number {number.id} ({number.label})")
    return number


def find_number_by_phone(db: Session, phone: Optional[str]) -> Optional[OutboundNumber]:
    """
    Find the active configuration for a number seen on a carrier callback.

    Matches on phone identity, so "+19142221900" and "(914) 222-1900" are
    the same number. Returns None when nothing matches.
    """
    if not normalize_phone(phone):
        return None

    try:
        candidates = (
            db.query(OutboundNumber)
            .filter(OutboundNumber.is_active.is_(True))
            .order_by(OutboundNumber.is_primary.desc(), OutboundNumber.created_at.asc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to load outbound numbers: {e}")
        raise DatastoreError("Failed to load phone number configuration") from e

    for number in candidates:
        if same_identity(phone, number.phone_number):
            return number
    return None
