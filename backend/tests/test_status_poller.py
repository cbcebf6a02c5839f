"""Tests for delivery status reconciliation."""

import uuid
from unittest.mock import patch

import pytest

from textdesk.core.config import settings
from textdesk.models import SmsConversation, SmsMessage, SmsMessageAudit
from textdesk.services.errors import ValidationError
from textdesk.services.status_poller import reconcile_message_statuses
from textdesk.services.telephony import MessageStatusResponse, TelephonyProviderError


def _message(db, sid: str, status: str = "queued", direction: str = "outbound", **fields) -> SmsMessage:
    conversation = db.query(SmsConversation).first()
    if conversation is None:
        conversation = SmsConversation(customer_phone="+15552220001")
        db.add(conversation)
        db.flush()
    message = SmsMessage(
        conversation_id=conversation.id,
        direction=direction,
        body="Your order shipped",
        from_number="+15550001111",
        to_number="+15552220001",
        twilio_sid=sid,
        status=status,
        **fields,
    )
    db.add(message)
    db.commit()
    return message


def _remote(sid: str, status: str, **fields) -> MessageStatusResponse:
    return MessageStatusResponse(message_id=sid, status=status, **fields)


class TestReconcileMessageStatuses:
    @pytest.mark.asyncio
    async def test_updates_changed_status(self, db, provider):
        message = _message(db, "SM_out_1")
        provider.fetch_message.return_value = _remote("SM_out_1", "delivered")

        outcome = await reconcile_message_statuses(db, provider=provider)

        assert outcome.checked == 1
        assert outcome.updated == 1
        assert outcome.results[0].old_status == "queued"
        assert outcome.results[0].new_status == "delivered"
        db.refresh(message)
        assert message.status == "delivered"
        assert message.status_check_count == 1
        assert message.status_checked_at is not None

    @pytest.mark.asyncio
    async def test_unchanged_status_still_counts_the_check(self, db, provider):
        message = _message(db, "SM_out_1", status="sent")
        provider.fetch_message.return_value = _remote("SM_out_1", "sent")

        outcome = await reconcile_message_statuses(db, provider=provider)

        assert outcome.updated == 0
        assert outcome.results[0].updated is False
        db.refresh(message)
        assert message.status_check_count == 1

    @pytest.mark.asyncio
    async def test_stores_carrier_error(self, db, provider):
        message = _message(db, "SM_out_1", status="sent")
        provider.fetch_message.return_value = _remote(
            "SM_out_1", "undelivered", error_code="30005", error_message="Unknown destination handset"
        )

        await reconcile_message_statuses(db, provider=provider)

        db.refresh(message)
        assert message.status == "undelivered"
        assert message.error_code == "30005"

    @pytest.mark.asyncio
    async def test_campaign_audit_rows(self, db, provider):
        audit = SmsMessageAudit(
            phone_number="+15552220001",
            message_body="Sale",
            twilio_sid="SM_batch_1",
            twilio_status="sent",
            batch_id=uuid.uuid4(),
        )
        db.add(audit)
        db.commit()
        provider.fetch_message.return_value = _remote("SM_batch_1", "delivered")

        outcome = await reconcile_message_statuses(db, provider=provider)

        assert outcome.results[0].source == "audit"
        db.refresh(audit)
        assert audit.twilio_status == "delivered"
        assert audit.status_check_count == 1

    @pytest.mark.asyncio
    async def test_settled_rows_are_not_selected(self, db, provider):
        _message(db, "SM_out_1", status="delivered")
        _message(db, "SM_in_1", status="received", direction="inbound")
        _message(db, "SM_out_2", status_check_count=settings.STATUS_POLL_MAX_CHECKS)
        db.add(SmsMessageAudit(phone_number="N/A", message_body="", twilio_status="skipped"))
        db.commit()

        outcome = await reconcile_message_statuses(db, provider=provider)

        assert outcome.checked == 0
        assert outcome.message == "No messages need status checking at this time"
        provider.fetch_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetch_error_is_recorded(self, db, provider):
        message = _message(db, "SM_out_1")
        provider.fetch_message.side_effect = TelephonyProviderError("twilio", "Resource not found", code="20404")

        outcome = await reconcile_message_statuses(db, provider=provider)

        assert outcome.checked == 1
        assert outcome.updated == 0
        assert "Resource not found" in outcome.results[0].error
        db.refresh(message)
        assert message.status == "queued"
        assert message.status_check_count == 1

    @pytest.mark.asyncio
    async def test_limit_caps_the_batch(self, db, provider):
        for i in range(3):
            _message(db, f"SM_out_{i}")
        provider.fetch_message.return_value = _remote("SM_out_x", "sent")

        outcome = await reconcile_message_statuses(db, limit=2, provider=provider)

        assert outcome.checked == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 501])
    async def test_limit_bounds(self, db, provider, limit):
        with pytest.raises(ValidationError):
            await reconcile_message_statuses(db, limit=limit, provider=provider)


class TestStatusPollApi:
    def test_nothing_to_do(self, client, admin_headers):
        response = client.post("/api/v1/campaigns/status-poll", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["checked"] == 0

    @patch("textdesk.services.status_poller.get_twilio_provider")
    def test_polls_pending_messages(self, mock_get_provider, client, db, admin_headers, provider):
        _message(db, "SM_out_1")
        provider.fetch_message.return_value = _remote("SM_out_1", "delivered")
        mock_get_provider.return_value = provider

        response = client.post("/api/v1/campaigns/status-poll?limit=10", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["updated"] == 1

    def test_limit_over_maximum(self, client, admin_headers):
        response = client.post("/api/v1/campaigns/status-poll?limit=501", headers=admin_headers)
        assert response.status_code == 400
        assert "Maximum limit is 500" in response.json()["detail"]

    def test_requires_admin(self, client, customer_headers):
        response = client.post("/api/v1/campaigns/status-poll", headers=customer_headers)
        assert response.status_code == 403
