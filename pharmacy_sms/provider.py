"""
Carrier integration.

TwilioSmsProvider posts to the Programmable Messaging resource through the
Twilio SDK's authenticated HTTP client so the full form payload (including
the status callback subscription) is under our control and a rejection can
be reported with the carrier's raw JSON body.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from pharmacy_sms.config import settings
from pharmacy_sms.errors import ConfigurationError, ProviderError
from pharmacy_sms.models import OutboundNumber

logger = logging.getLogger(__name__)

# Every status change the carrier can report for a message
STATUS_CALLBACK_EVENTS = ("initiated", "sent", "delivered", "undelivered", "failed", "read")


@dataclass
class SendResult:
    sid: str
    status: str
    raw: Dict[str, Any] = field(default_factory=dict)


class SmsProvider(Protocol):
    """Minimal contract for a channel provider."""

    def send(
        self,
        number: OutboundNumber,
        to: str,
        body: str,
        status_callback: Optional[str] = None,
    ) -> SendResult: ...


def build_status_callback_url(number: OutboundNumber) -> Optional[str]:
    """Per-number callback URL, else one derived from PUBLIC_BASE_URL."""
    if number.status_callback_url:
        return number.status_callback_url
    if settings.PUBLIC_BASE_URL:
        return settings.PUBLIC_BASE_URL.rstrip("/") + settings.STATUS_CALLBACK_PATH
    return None


class TwilioSmsProvider:
    """Sends SMS with the credentials of the selected number."""

    def _credentials(self, number: OutboundNumber):
        account_sid = number.account_sid or settings.TWILIO_ACCOUNT_SID
        auth_token = number.auth_token or settings.TWILIO_AUTH_TOKEN

        missing = [
            name
            for name, value in [("account_sid", account_sid), ("auth_token", auth_token)]
            if not value
        ]
        if missing:
            logger.critical(f"Missing Twilio credentials for number {number.id}: {missing}")
            raise ConfigurationError("Twilio credentials not configured")

        return account_sid, auth_token

    def send(
        self,
        number: OutboundNumber,
        to: str,
        body: str,
        status_callback: Optional[str] = None,
    ) -> SendResult:
        account_sid, auth_token = self._credentials(number)
        client = TwilioClient(account_sid, auth_token)

        data: Dict[str, Any] = {"To": to, "From": number.phone_number, "Body": body}
        if status_callback:
            data["StatusCallback"] = status_callback
            data["StatusCallbackEvent"] = list(STATUS_CALLBACK_EVENTS)

        url = f"{settings.TWILIO_API_BASE.rstrip('/')}/2010-04-01/Accounts/{account_sid}/Messages.json"
        logger.info(
            "Sending SMS to Twilio",
            extra={"to": to, "from": number.phone_number, "body_length": len(body)},
        )

        try:
            response = client.request("POST", url, data=data)
        except (TwilioException, OSError) as e:
            logger.error(f"Twilio transport error: {e}")
            raise ProviderError(f"Failed to reach SMS provider: {e}", status_code=500) from e

        try:
            payload = json.loads(response.text or "{}")
        except json.JSONDecodeError:
            payload = {"raw": (response.text or "")[:500]}

        if response.status_code >= 400:
            logger.error(f"Twilio API error {response.status_code}: {payload}")
            raise ProviderError(payload.get("message") or "Failed to send SMS", details=payload)

        sid = payload.get("sid")
        if not sid:
            logger.error(f"Twilio response without sid: {payload}")
            raise ProviderError("SMS provider returned no tracking id", details=payload, status_code=500)

        logger.info(f"SMS sent successfully, SID: {sid}")
        return SendResult(sid=sid, status=payload.get("status") or "queued", raw=payload)


def get_sms_provider() -> SmsProvider:
    """FastAPI dependency returning the configured carrier."""
    return TwilioSmsProvider()
