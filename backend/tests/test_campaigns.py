"""Tests for the batch campaign dispatcher and its API."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from textdesk.core.config import settings
from textdesk.models import SmsMessageAudit
from textdesk.services import campaigns as campaigns_service
from textdesk.services.campaigns import (
    NO_PHONE,
    SKIP_INVALID_PHONE,
    SKIP_NO_CONSENT,
    SKIP_NO_PHONE,
    SKIP_OPTED_OUT,
    SKIP_USER_NOT_FOUND,
    get_batch_summary,
    list_batches,
    render_message,
    send_batch,
    validate_batch_request,
)
from textdesk.services.consent import record_opt_out
from textdesk.services.errors import NotFoundError, ValidationError
from textdesk.services.telephony import TelephonyProviderError

BATCH_URL = "/api/v1/campaigns/batch"


class TestValidateBatchRequest:
    def test_empty_ids(self):
        with pytest.raises(ValidationError, match="userIds"):
            validate_batch_request([], "Hello")

    def test_too_many_ids(self):
        ids = [str(uuid.uuid4()) for _ in range(settings.SMS_BATCH_MAX_RECIPIENTS + 1)]
        with pytest.raises(ValidationError, match="Maximum"):
            validate_batch_request(ids, "Hello")

    def test_blank_template(self):
        with pytest.raises(ValidationError, match="messageTemplate"):
            validate_batch_request(["a"], "   ")

    def test_template_is_stripped(self):
        assert validate_batch_request(["a"], "  Hello  ") == "Hello"


class TestRenderMessage:
    def test_replaces_every_token(self):
        assert render_message("Hi [First Name]! Bye [First Name].", "Jane") == "Hi Jane! Bye Jane."

    def test_default_name(self):
        assert render_message("Hi [First Name]", None) == "Hi Customer"
        assert render_message("Hi [First Name]", "  ") == "Hi Customer"

    def test_no_token(self):
        assert render_message("Sale today", "Jane") == "Sale today"


class TestSendBatch:
    @pytest.mark.asyncio
    async def test_success_writes_audit_row(self, db, admin, customer, provider):
        response = await send_batch(db, [str(customer.id)], "Hi [First Name]", sent_by=admin.id, provider=provider)

        assert response.success is True
        assert response.summary.successful == 1
        assert response.results[0].status == "success"
        assert response.results[0].twilio_sid == "SM_test_123"
        assert response.message == "Batch SMS campaign completed. 1 sent, 0 failed, 0 skipped."
        provider.send_sms.assert_awaited_once_with(to="+15551234567", body="Hi Jane")

        row = db.query(SmsMessageAudit).one()
        assert row.batch_id == response.batch_id
        assert row.user_id == customer.id
        assert row.message_body == "Hi Jane"
        assert row.template_used == "Hi [First Name]"
        assert row.twilio_sid == "SM_test_123"
        assert row.twilio_status == "queued"
        assert row.sent_by == admin.id

    @pytest.mark.asyncio
    async def test_one_bad_recipient_does_not_stop_the_batch(self, db, admin, customer, provider, make_profile):
        unconsented = make_profile(first_name="Paul", phone="+15550000004", sms_consent=False)
        no_phone = make_profile(first_name="Nina", sms_consent=True)
        provider.send_sms.side_effect = TelephonyProviderError("twilio", "Invalid 'To' number", code="21211")

        response = await send_batch(
            db,
            [str(no_phone.id), str(unconsented.id), str(customer.id)],
            "Hello",
            sent_by=admin.id,
            provider=provider,
        )

        assert response.summary.model_dump() == {"total": 3, "successful": 0, "failed": 1, "skipped": 2}
        assert provider.send_sms.await_count == 1
        assert response.results[0].reason == SKIP_NO_PHONE
        assert response.results[1].reason == SKIP_NO_CONSENT
        failed = response.results[2]
        assert failed.status == "failed"
        assert failed.error_code == "21211"
        assert db.query(SmsMessageAudit).count() == 3

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_sent_once(self, db, admin, customer, provider, make_profile):
        other = make_profile(first_name="Sam", phone="+15553334444", sms_consent=True)
        ids = [str(customer.id), str(other.id), str(customer.id)]

        response = await send_batch(db, ids, "Hi [First Name]", sent_by=admin.id, provider=provider)

        assert provider.send_sms.await_count == 2
        assert [r.user_id for r in response.results] == [str(customer.id), str(other.id)]
        assert response.summary.total == 2
        assert response.summary.successful == 2
        assert db.query(SmsMessageAudit).count() == 2

    @pytest.mark.asyncio
    async def test_audit_failure_after_send_is_not_reported_as_failed(self, db, admin, customer, provider):
        real_write = campaigns_service._write_audit
        calls = []

        def flaky_write(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise RuntimeError("deadlock detected")
            return real_write(*args, **kwargs)

        with patch("textdesk.services.campaigns._write_audit", side_effect=flaky_write):
            response = await send_batch(db, [str(customer.id)], "Hello", sent_by=admin.id, provider=provider)

        assert response.results[0].status == "success"
        assert response.summary.failed == 0
        row = db.query(SmsMessageAudit).one()
        assert row.twilio_sid == "SM_test_123"
        assert row.twilio_status == "queued"

    @pytest.mark.asyncio
    async def test_skip_reasons(self, db, admin, customer, provider, make_profile):
        no_phone = make_profile(first_name="Nina", sms_consent=True)
        bad_phone = make_profile(first_name="Bo", phone="12345", sms_consent=True)
        record_opt_out(db, customer.phone)
        # Ledger wins even if the consent flag is set again
        customer.sms_consent = True
        db.commit()

        response = await send_batch(
            db,
            [str(customer.id), str(no_phone.id), str(bad_phone.id), "not-a-uuid"],
            "Hello",
            sent_by=admin.id,
            provider=provider,
        )

        reasons = [r.reason for r in response.results]
        assert reasons == [SKIP_OPTED_OUT, SKIP_NO_PHONE, SKIP_INVALID_PHONE, SKIP_USER_NOT_FOUND]
        assert [r.phone for r in response.results] == ["+15551234567", NO_PHONE, "12345", NO_PHONE]
        provider.send_sms.assert_not_called()

        rows = db.query(SmsMessageAudit).all()
        assert {row.twilio_status for row in rows} == {"skipped"}
        assert {row.error_message for row in rows} == set(reasons)

    @pytest.mark.asyncio
    async def test_results_follow_input_order(self, db, admin, customer, provider, make_profile):
        second = make_profile(first_name="Sam", phone="+15553334444", sms_consent=True)
        third = make_profile(first_name="Val", phone="+15557778888", sms_consent=True)
        ids = [str(third.id), str(customer.id), str(second.id)]

        response = await send_batch(db, ids, "Hi [First Name]", sent_by=admin.id, provider=provider)

        assert [r.user_id for r in response.results] == ids
        bodies = [call.kwargs["body"] for call in provider.send_sms.await_args_list]
        assert bodies == ["Hi Val", "Hi Jane", "Hi Sam"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, db, admin, customer, provider, make_profile):
        second = make_profile(first_name="Sam", phone="+15553334444", sms_consent=True)
        provider.send_sms.side_effect = [RuntimeError("socket closed"), provider.send_sms.return_value]

        response = await send_batch(db, [str(customer.id), str(second.id)], "Hi", sent_by=admin.id, provider=provider)

        assert [r.status for r in response.results] == ["failed", "success"]
        assert response.results[0].error == "socket closed"
        assert db.query(SmsMessageAudit).count() == 2

    @pytest.mark.asyncio
    @patch("textdesk.services.campaigns.asyncio.sleep", new_callable=AsyncMock)
    async def test_pacing_only_after_send_attempts(self, mock_sleep, db, admin, customer, provider, make_profile):
        second = make_profile(first_name="Sam", phone="+15553334444", sms_consent=True)

        await send_batch(
            db,
            [str(customer.id), str(uuid.uuid4()), str(second.id)],
            "Hi",
            sent_by=admin.id,
            provider=provider,
            delay_seconds=0.5,
        )

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_validation_happens_before_side_effects(self, db, admin, provider):
        with pytest.raises(ValidationError):
            await send_batch(db, [], "Hi", sent_by=admin.id, provider=provider)
        assert db.query(SmsMessageAudit).count() == 0


class TestBatchHistory:
    @pytest.mark.asyncio
    async def test_summary_rolls_up_outcomes(self, db, admin, customer, provider):
        response = await send_batch(
            db, [str(customer.id), str(uuid.uuid4())], "Hi", sent_by=admin.id, provider=provider
        )

        summary = get_batch_summary(db, response.batch_id)

        assert summary.total == 2
        assert summary.sent == 1
        assert summary.pending == 1
        assert summary.skipped == 1
        assert summary.delivered == 0
        assert summary.template_used == "Hi"
        assert summary.sender_name == "Ada Admin"

    @pytest.mark.asyncio
    async def test_list_batches(self, db, admin, customer, provider):
        await send_batch(db, [str(customer.id)], "First", sent_by=admin.id, provider=provider)
        await send_batch(db, [str(customer.id)], "Second", sent_by=admin.id, provider=provider)

        batches = list_batches(db)

        assert [b.template_used for b in batches] == ["Second", "First"]

    def test_unknown_batch(self, db):
        with pytest.raises(NotFoundError):
            get_batch_summary(db, uuid.uuid4())


class TestBatchApi:
    @patch("textdesk.services.campaigns.get_twilio_provider")
    def test_accepts_camel_case_keys(self, mock_get_provider, client, db, customer, admin_headers, provider):
        mock_get_provider.return_value = provider

        response = client.post(
            BATCH_URL,
            json={"userIds": [str(customer.id)], "messageTemplate": "Hi [First Name]"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["summary"]["successful"] == 1
        assert data["results"][0]["twilio_sid"] == "SM_test_123"

    @patch("textdesk.services.campaigns.get_twilio_provider")
    def test_accepts_snake_case_keys(self, mock_get_provider, client, customer, admin_headers, provider):
        mock_get_provider.return_value = provider

        response = client.post(
            BATCH_URL,
            json={"user_ids": [str(customer.id)], "message_template": "Hi"},
            headers=admin_headers,
        )

        assert response.status_code == 200

    def test_empty_ids_is_400(self, client, admin_headers):
        response = client.post(BATCH_URL, json={"userIds": [], "messageTemplate": "Hi"}, headers=admin_headers)
        assert response.status_code == 400
        assert "userIds" in response.json()["detail"]

    def test_requires_admin(self, client, customer, customer_headers):
        response = client.post(
            BATCH_URL,
            json={"userIds": [str(customer.id)], "messageTemplate": "Hi"},
            headers=customer_headers,
        )
        assert response.status_code == 403

    def test_eligible_users(self, client, db, customer, admin_headers, make_profile):
        make_profile(first_name="Paul", phone="+15550000004", sms_consent=False)

        response = client.get("/api/v1/campaigns/eligible-users", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == str(customer.id)

    @patch("textdesk.services.campaigns.get_twilio_provider")
    def test_batch_history_endpoints(self, mock_get_provider, client, customer, admin_headers, provider):
        mock_get_provider.return_value = provider
        sent = client.post(
            BATCH_URL,
            json={"userIds": [str(customer.id)], "messageTemplate": "Hi"},
            headers=admin_headers,
        ).json()

        listing = client.get("/api/v1/campaigns/batches", headers=admin_headers)
        detail = client.get(f"/api/v1/campaigns/batches/{sent['batch_id']}", headers=admin_headers)
        missing = client.get(f"/api/v1/campaigns/batches/{uuid.uuid4()}", headers=admin_headers)

        assert listing.json()["total"] == 1
        assert detail.json()["sent"] == 1
        assert missing.status_code == 404
