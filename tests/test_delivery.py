"""
Tests for delivery status tracking and the POST /sms-delivery-webhook endpoint.

Tests cover:
- Provider to internal status mapping
- Delivery timestamp stamping and clearing
- Metadata persistence
- Idempotent replays
- Unknown tracking ids (404, nothing written)
- Missing fields (400)
- Datastore failure (500, nothing written)
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from pharmacy_sms.delivery import apply_status_update, map_provider_status
from pharmacy_sms.models import Message
from pharmacy_sms.schemas import DeliveryStatusForm


SID = "SM0123456789abcdef0123456789abcdef"


def status_form(status="delivered", sid=SID, **extra):
    data = {"MessageStatus": status, "MessageSid": sid, "To": "+13472074064", "From": "+19142221900"}
    data.update(extra)
    return data


def snapshot(message):
    return (message.status, message.delivered_at, message.error_code, message.meta)


class TestMapProviderStatus:

    @pytest.mark.parametrize("provider_status,expected", [
        ("queued", "sending"),
        ("accepted", "sending"),
        ("sending", "sending"),
        ("sent", "sent"),
        ("delivered", "delivered"),
        ("undelivered", "failed"),
        ("failed", "failed"),
        ("DELIVERED", "delivered"),
        ("Read", "read"),
        ("receiving", "receiving"),
    ])
    def test_mapping(self, provider_status, expected):
        assert map_provider_status(provider_status) == expected


class TestApplyStatusUpdate:

    def test_delivered_sets_timestamp_and_metadata(self, db, add_number, add_message):
        add_number(phone_number="+19142221900", display_name="Mount Vernon Location")
        message = add_message(external_id=SID, status="sent", meta={"to": "+13472074064"})

        result = apply_status_update(db, DeliveryStatusForm.model_validate(status_form("delivered")))

        assert result.found
        assert result.status == "delivered"
        db.refresh(message)
        assert message.status == "delivered"
        assert message.delivered_at is not None
        assert message.error_code is None
        assert message.meta["provider_status"] == "delivered"
        assert message.meta["phone_number_used"] == "Mount Vernon Location"
        # Earlier metadata survives
        assert message.meta["to"] == "+13472074064"

    def test_failure_clears_timestamp_and_records_error(self, db, add_message):
        message = add_message(external_id=SID, status="sent")
        apply_status_update(db, DeliveryStatusForm.model_validate(status_form("delivered")))

        apply_status_update(db, DeliveryStatusForm.model_validate(
            status_form("undelivered", ErrorCode="30003", ErrorMessage="Unreachable destination handset")
        ))

        db.refresh(message)
        assert message.status == "failed"
        assert message.delivered_at is None
        assert message.error_code == "30003"
        assert message.meta["error_message"] == "Unreachable destination handset"
        assert message.meta["provider_status"] == "undelivered"
        # Unknown sending number falls back to the raw From value
        assert message.meta["phone_number_used"] == "+19142221900"

    @pytest.mark.parametrize("status", ["delivered", "failed", "sent", "queued"])
    def test_replay_is_idempotent(self, db, add_message, status):
        message = add_message(external_id=SID, status="sent")
        form = DeliveryStatusForm.model_validate(status_form(status, ErrorCode="30005"))

        apply_status_update(db, form)
        db.refresh(message)
        once = snapshot(message)

        apply_status_update(db, form)
        db.refresh(message)

        assert snapshot(message) == once

    def test_sms_status_fallback(self, db, add_message):
        message = add_message(external_id=SID, status="sent")
        form = DeliveryStatusForm.model_validate({"SmsStatus": "delivered", "MessageSid": SID})

        apply_status_update(db, form)

        db.refresh(message)
        assert message.status == "delivered"


class TestDeliveryWebhook:

    def test_updates_message_and_acknowledges(self, client, db, add_message):
        message = add_message(external_id=SID, status="sent")

        response = client.post("/sms-delivery-webhook", data=status_form("delivered"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Response" in response.text
        db.expire_all()
        assert db.get(Message, message.id).status == "delivered"

    def test_unknown_tracking_id_returns_404_and_writes_nothing(self, client, db, add_message):
        message = add_message(external_id=SID, status="sent", meta={"to": "+13472074064"})
        before = snapshot(message)

        response = client.post("/sms-delivery-webhook", data=status_form("delivered", sid="SMunknown"))

        assert response.status_code == 404
        db.expire_all()
        stored = db.get(Message, message.id)
        assert snapshot(stored) == before
        assert db.query(Message).count() == 1

    @pytest.mark.parametrize("missing", ["MessageStatus", "MessageSid"])
    def test_missing_fields_return_400(self, client, missing):
        data = status_form("delivered")
        del data[missing]

        response = client.post("/sms-delivery-webhook", data=data)

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    def test_datastore_failure_returns_500_so_carrier_retries(self, client, db, add_message, monkeypatch):
        message = add_message(external_id=SID, status="sent", meta={"to": "+13472074064"})
        before = snapshot(message)

        def failing_commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "commit", failing_commit)
        response = client.post("/sms-delivery-webhook", data=status_form("delivered"))
        monkeypatch.undo()

        assert response.status_code == 500
        db.expire_all()
        assert snapshot(db.get(Message, message.id)) == before

        retried = client.post("/sms-delivery-webhook", data=status_form("delivered"))

        assert retried.status_code == 200
        db.expire_all()
        assert db.get(Message, message.id).status == "delivered"
