"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for the outbound send endpoint
- Form models for the carrier's inbound and delivery-status callbacks
- Response models for API responses
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendSmsRequest(BaseModel):
    """
    Body of POST /send-sms.

    `to` and `message` are checked by the dispatcher rather than by pydantic
    so a missing field answers 400 instead of 422.
    """
    to: Optional[str] = Field(None, description="Destination phone number")
    message: Optional[str] = Field(None, description="Message body")
    patient_id: Optional[str] = Field(
        None,
        alias="patientId",
        description="Patient the message belongs to",
    )
    phone_number_id: Optional[str] = Field(
        None,
        alias="phoneNumberId",
        description="Explicit outbound number to send from",
    )
    message_id: Optional[str] = Field(
        None,
        alias="messageId",
        description="Existing outbound message record to attach the tracking id to",
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "to": "+15551234567",
                    "message": "Your prescription is ready for pickup.",
                    "patientId": "7d0c6a3e-0d8e-4a5c-9a59-2b3f1c1f2f10",
                }
            ]
        },
    )


class InboundSmsForm(BaseModel):
    """Form fields posted by the carrier for a newly received message."""
    from_number: Optional[str] = Field(None, alias="From")
    to_number: Optional[str] = Field(None, alias="To")
    body: Optional[str] = Field(None, alias="Body")
    message_sid: Optional[str] = Field(None, alias="MessageSid")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DeliveryStatusForm(BaseModel):
    """Form fields posted by the carrier when a sent message changes status."""
    message_status: Optional[str] = Field(None, alias="MessageStatus")
    sms_status: Optional[str] = Field(None, alias="SmsStatus")
    message_sid: Optional[str] = Field(None, alias="MessageSid")
    error_code: Optional[str] = Field(None, alias="ErrorCode")
    error_message: Optional[str] = Field(None, alias="ErrorMessage")
    to_number: Optional[str] = Field(None, alias="To")
    from_number: Optional[str] = Field(None, alias="From")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def status(self) -> Optional[str]:
        # Older callbacks only carry SmsStatus
        return self.message_status or self.sms_status


# =============================================================================
# Pydantic Response Models
# =============================================================================

class SendSmsResponse(BaseModel):
    """Response model for a successful send."""
    success: bool = Field(default=True)
    message_id: str = Field(
        ...,
        serialization_alias="messageId",
        description="Carrier tracking id",
    )
    status: str = Field(..., description="Status reported by the carrier")
    phone_number_used: str = Field(..., serialization_alias="phoneNumberUsed")
    phone_number_display_name: Optional[str] = Field(
        None,
        serialization_alias="phoneNumberDisplayName",
    )
    record_id: Optional[str] = Field(
        None,
        serialization_alias="recordId",
        description="Id of the stored outbound message, when one was tracked",
    )

    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")
    details: Optional[Any] = Field(None, description="Provider payload or extra context")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
