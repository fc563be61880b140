"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import validates

from pharmacy_sms.phone import normalize_phone
from pharmacy_sms.storage import Base, new_id, utcnow


class OutboundNumber(Base):
    """
    A provisioned sending identity: phone number, carrier credentials and
    routing flags. Configured administratively; the pipeline only reads it.

    Table: outbound_numbers
    """
    __tablename__ = "outbound_numbers"

    id = Column(String(36), primary_key=True, default=new_id)
    phone_number = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    department = Column(String, nullable=True)
    channel = Column(String, nullable=False, default="sms")
    account_sid = Column(String, nullable=True)
    auth_token = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    status_callback_url = Column(String, nullable=True)
    auto_response_enabled = Column(Boolean, nullable=False, default=False)
    auto_response_text = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def label(self) -> str:
        """Display name, falling back to the raw number."""
        return self.display_name or self.phone_number


class Patient(Base):
    """
    Patient identity record.

    Table: patients
    Unique: normalized_phone (canonical form of phone, kept in sync on assignment)
    """
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    normalized_phone = Column(String, nullable=True, unique=True)
    email = Column(String, nullable=True)
    preferred_channel = Column(String, nullable=False, default="sms")
    status = Column(String, nullable=False, default="active")
    notes = Column(Text, nullable=True)
    assigned_number_id = Column(String(36), ForeignKey("outbound_numbers.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @validates("phone")
    def _sync_normalized_phone(self, key, value):
        self.normalized_phone = normalize_phone(value) or None
        return value


class Message(Base):
    """
    A single directional communication.

    Table: messages
    Unique: external_id (provider tracking id, used to correlate callbacks)
    """
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=True, index=True)
    channel = Column(String, nullable=False, default="sms")
    direction = Column(String, nullable=False)  # "inbound" / "outbound"
    content = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="queued")
    sender_name = Column(String, nullable=True)
    external_id = Column(String, nullable=True, unique=True)
    outbound_number_id = Column(String(36), ForeignKey("outbound_numbers.id"), nullable=True)
    error_code = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
