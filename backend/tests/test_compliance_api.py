"""Tests for the opt-out ledger, eligibility and consent endpoints."""

from textdesk.models import SmsConsentRecord, SmsOptOut
from textdesk.services.consent import is_eligible, record_opt_out

OPT_OUTS_URL = "/api/v1/compliance/opt-outs"
OPT_IN_URL = "/api/v1/compliance/opt-in"


class TestOptOutLedgerApi:
    def test_manual_opt_out(self, client, db, customer, admin_headers):
        response = client.post(
            OPT_OUTS_URL,
            json={"phone_number": "555-123-4567", "notes": "Asked by phone"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["phone_number"] == "+15551234567"
        assert data["method"] == "admin"
        assert not is_eligible(db, customer.phone)

    def test_list(self, client, db, admin_headers):
        record_opt_out(db, "+15552220001")
        record_opt_out(db, "+15552220002")

        response = client.get(OPT_OUTS_URL, headers=admin_headers)

        assert response.json()["total"] == 2

    def test_remove(self, client, db, customer, admin_headers):
        record_opt_out(db, customer.phone)

        response = client.delete(f"{OPT_OUTS_URL}/{customer.phone}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"phone_number": "+15551234567", "removed": True}
        assert db.query(SmsOptOut).count() == 0
        db.refresh(customer)
        assert customer.sms_consent_method == "admin"

    def test_remove_when_not_opted_out(self, client, customer, admin_headers):
        response = client.delete(f"{OPT_OUTS_URL}/{customer.phone}", headers=admin_headers)
        assert response.json()["removed"] is False

    def test_bad_phone(self, client, admin_headers):
        response = client.post(OPT_OUTS_URL, json={"phone_number": "123"}, headers=admin_headers)
        assert response.status_code == 400


class TestEligibilityApi:
    def test_eligible(self, client, customer, admin_headers):
        response = client.get("/api/v1/compliance/eligibility?phone=5551234567", headers=admin_headers)
        assert response.json() == {"phone_number": "+15551234567", "eligible": True, "opted_out": False}

    def test_opted_out(self, client, db, customer, admin_headers):
        record_opt_out(db, customer.phone)
        response = client.get(f"/api/v1/compliance/eligibility?phone={customer.phone}", headers=admin_headers)
        data = response.json()
        assert data["eligible"] is False
        assert data["opted_out"] is True


class TestMyConsent:
    def test_customer_withdraws_consent(self, client, db, customer, customer_headers):
        response = client.put("/api/v1/compliance/consent/me", json={"sms_consent": False}, headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["sms_consent"] is False
        assert db.query(SmsOptOut).one().method == "website"

    def test_customer_grants_consent(self, client, db, customer, customer_headers):
        record_opt_out(db, customer.phone)

        response = client.put("/api/v1/compliance/consent/me", json={"sms_consent": True}, headers=customer_headers)

        assert response.json()["sms_consent"] is True
        assert is_eligible(db, customer.phone)


class TestWebOptInApi:
    def test_new_subscriber(self, client, db):
        response = client.post(
            OPT_IN_URL,
            json={"phone_number": "(555) 777-8888", "first_name": "Val", "consent": True},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["phone_number"] == "+15557778888"
        assert "Reply STOP" in data["message"]
        assert db.query(SmsConsentRecord).one().first_name == "Val"

    def test_consent_box_must_be_ticked(self, client, db):
        response = client.post(OPT_IN_URL, json={"phone_number": "+15557778888", "consent": False})
        assert response.status_code == 400
        assert db.query(SmsConsentRecord).count() == 0

    def test_already_subscribed(self, client, customer):
        response = client.post(OPT_IN_URL, json={"phone_number": customer.phone, "consent": True})
        assert response.status_code == 409

    def test_bad_phone(self, client):
        response = client.post(OPT_IN_URL, json={"phone_number": "123", "consent": True})
        assert response.status_code == 400
