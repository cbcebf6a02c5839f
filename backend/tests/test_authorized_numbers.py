"""Tests for the 1:1 messaging allow-list service and endpoints."""

import uuid

import pytest

from textdesk.models import AuthorizedPhoneNumber
from textdesk.services.authorized_numbers import authorize, is_authorized, list_active, revoke
from textdesk.services.consent import record_opt_out
from textdesk.services.errors import (
    ComplianceError,
    CustomerNotFoundError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)


class TestAuthorize:
    def test_success_records_verification(self, db, customer, admin):
        row = authorize(db, "5551234567", notes="Catering follow-up", added_by=admin.id)

        assert row.phone_number == "+15551234567"
        assert row.compliance_verified is True
        assert row.verification_date is not None
        assert row.verification_notes == "Catering follow-up"
        assert row.added_by == admin.id
        assert row.is_active is True
        assert is_authorized(db, "+15551234567")

    def test_unknown_phone_is_compliance_error(self, db):
        with pytest.raises(ComplianceError, match="not found in customer database") as exc_info:
            authorize(db, "+15550009999")
        assert isinstance(exc_info.value, CustomerNotFoundError)

    def test_opted_out_phone(self, db, customer):
        record_opt_out(db, customer.phone)
        with pytest.raises(ComplianceError, match="opted out"):
            authorize(db, customer.phone)

    def test_unconsented_profile(self, db, make_profile):
        make_profile(first_name="Paul", phone="+15550000004", sms_consent=False)
        with pytest.raises(ComplianceError, match="has not consented"):
            authorize(db, "+15550000004")

    def test_already_authorized(self, db, customer):
        authorize(db, customer.phone)
        with pytest.raises(DuplicateError):
            authorize(db, customer.phone)
        assert db.query(AuthorizedPhoneNumber).count() == 1

    def test_bad_phone(self, db):
        with pytest.raises(ValidationError):
            authorize(db, "abc")


class TestRevoke:
    def test_revoke_keeps_row(self, db, customer):
        row = authorize(db, customer.phone)

        revoked = revoke(db, row.id)

        assert revoked.is_active is False
        assert not is_authorized(db, customer.phone)
        assert db.query(AuthorizedPhoneNumber).count() == 1
        assert list_active(db) == []

    def test_revoke_is_idempotent(self, db, customer):
        row = authorize(db, customer.phone)
        revoke(db, row.id)
        assert revoke(db, row.id).is_active is False

    def test_reauthorize_after_revoke(self, db, customer):
        row = authorize(db, customer.phone)
        revoke(db, row.id)

        again = authorize(db, customer.phone)

        assert again.id != row.id
        assert [r.id for r in list_active(db)] == [again.id]

    def test_revoke_unknown(self, db):
        with pytest.raises(NotFoundError):
            revoke(db, uuid.uuid4())


class TestAuthorizedNumbersApi:
    def test_authorize_and_list(self, client, customer, admin_headers):
        response = client.post(
            "/api/v1/compliance/authorized-numbers",
            json={"phone_number": "555-123-4567", "notes": "VIP"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["phone_number"] == "+15551234567"

        listing = client.get("/api/v1/compliance/authorized-numbers", headers=admin_headers)
        assert listing.status_code == 200
        assert listing.json()["total"] == 1

    def test_compliance_failure_is_422(self, client, admin_headers):
        response = client.post(
            "/api/v1/compliance/authorized-numbers",
            json={"phone_number": "+15550009999"},
            headers=admin_headers,
        )
        assert response.status_code == 422
        assert "not found in customer database" in response.json()["detail"]

    def test_duplicate_is_409(self, client, customer, admin_headers):
        payload = {"phone_number": customer.phone}
        client.post("/api/v1/compliance/authorized-numbers", json=payload, headers=admin_headers)
        response = client.post("/api/v1/compliance/authorized-numbers", json=payload, headers=admin_headers)
        assert response.status_code == 409

    def test_bad_phone_is_400(self, client, admin_headers):
        response = client.post(
            "/api/v1/compliance/authorized-numbers",
            json={"phone_number": "12"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_revoke_endpoint(self, client, db, customer, admin_headers):
        row = authorize(db, customer.phone)
        response = client.delete(f"/api/v1/compliance/authorized-numbers/{row.id}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        missing = client.delete(f"/api/v1/compliance/authorized-numbers/{uuid.uuid4()}", headers=admin_headers)
        assert missing.status_code == 404

    def test_requires_admin(self, client, customer_headers):
        response = client.get("/api/v1/compliance/authorized-numbers", headers=customer_headers)
        assert response.status_code == 403

    def test_requires_token(self, client):
        response = client.get("/api/v1/compliance/authorized-numbers")
        assert response.status_code in (401, 403)
