"""SMS compliance API: authorized numbers, opt-out ledger, consent."""

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from textdesk.api.v1.errors import to_http_error
from textdesk.core.auth import get_admin_profile, get_current_profile
from textdesk.core.database import get_db
from textdesk.models.profile import Profile
from textdesk.schemas.compliance import (
    AuthorizedNumberListResponse,
    AuthorizedNumberResponse,
    AuthorizeNumberRequest,
    ConsentResponse,
    ConsentUpdateRequest,
    EligibilityResponse,
    OptInResult,
    OptOutListResponse,
    OptOutRequest,
    OptOutResponse,
    WebOptInRequest,
    WebOptInResponse,
)
from textdesk.services import authorized_numbers
from textdesk.services.consent import (
    is_eligible,
    is_opted_out,
    list_opt_outs,
    record_opt_in,
    record_opt_out,
    submit_web_opt_in,
    update_profile_consent,
)
from textdesk.services.errors import SmsServiceError, ValidationError
from textdesk.services.phone import require_phone

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Authorized numbers (1:1 messaging allow-list)
# ---------------------------------------------------------------------------


@router.get("/authorized-numbers", response_model=AuthorizedNumberListResponse)
def list_authorized_numbers(
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    items = authorized_numbers.list_active(db)
    return AuthorizedNumberListResponse(items=items, total=len(items))


@router.post("/authorized-numbers", response_model=AuthorizedNumberResponse, status_code=201)
def authorize_number(
    payload: AuthorizeNumberRequest,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    """Add a number to the allow-list after verifying consent and opt-out status."""
    try:
        return authorized_numbers.authorize(db, payload.phone_number, notes=payload.notes, added_by=admin.id)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc


@router.delete("/authorized-numbers/{authorized_id}", response_model=AuthorizedNumberResponse)
def revoke_authorized_number(
    authorized_id: uuid.UUID,
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    try:
        return authorized_numbers.revoke(db, authorized_id)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc


# ---------------------------------------------------------------------------
# Opt-out ledger
# ---------------------------------------------------------------------------


@router.get("/opt-outs", response_model=OptOutListResponse)
def get_opt_outs(
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    items = list_opt_outs(db)
    return OptOutListResponse(items=items, total=len(items))


@router.post("/opt-outs", response_model=OptOutResponse, status_code=201)
def create_opt_out(
    payload: OptOutRequest,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    """Record an opt-out on a customer's behalf (e.g. a phone call request)."""
    try:
        opt_out = record_opt_out(db, payload.phone_number, method=payload.method, notes=payload.notes)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc
    logger.info("Manual opt-out by %s for %s", admin.id, opt_out.phone_number)
    return opt_out


@router.delete("/opt-outs/{phone}", response_model=OptInResult)
def remove_opt_out(
    phone: str,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    """Lift an opt-out and restore consent for the number."""
    try:
        normalized = require_phone(phone)
        removed = record_opt_in(db, normalized, method="admin")
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc
    logger.info("Manual opt-in by %s for %s (removed=%s)", admin.id, normalized, removed)
    return OptInResult(phone_number=normalized, removed=removed)


@router.get("/eligibility", response_model=EligibilityResponse)
def check_eligibility(
    phone: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    try:
        normalized = require_phone(phone)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc
    return EligibilityResponse(
        phone_number=normalized,
        eligible=is_eligible(db, normalized),
        opted_out=is_opted_out(db, normalized),
    )


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------


@router.put("/consent/me", response_model=ConsentResponse)
def update_my_consent(
    payload: ConsentUpdateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    """Customer toggles SMS consent from their own settings page."""
    try:
        return update_profile_consent(db, current_profile, payload.sms_consent)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc


@router.post("/opt-in", response_model=WebOptInResponse, status_code=201)
def web_opt_in(
    payload: WebOptInRequest,
    db: Session = Depends(get_db),
):
    """Public SMS sign-up form. No authentication."""
    try:
        if not payload.consent:
            raise ValidationError("You must agree to receive SMS messages to opt in")
        submit_web_opt_in(
            db,
            payload.phone_number,
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
        )
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc

    return WebOptInResponse(
        phone_number=require_phone(payload.phone_number),
        message="You are now subscribed to SMS messages. Reply STOP at any time to unsubscribe.",
    )
