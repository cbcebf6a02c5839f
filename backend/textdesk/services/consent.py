"""Consent registry: who may receive SMS.

The profile's ``sms_consent`` flag and the opt-out ledger are both
consulted: a number is eligible only with consent granted AND no ledger
row. Opt-out and opt-in work for numbers with no profile at all, since a
non-customer can still text STOP to a campaign number.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from textdesk.models.profile import Profile
from textdesk.models.sms_consent_record import SmsConsentRecord
from textdesk.models.sms_opt_out import SmsOptOut
from textdesk.services.errors import DuplicateError
from textdesk.services.phone import normalize_phone, phone_variants, require_phone

logger = logging.getLogger(__name__)

STOP_KEYWORD_METHOD = "STOP keyword"
START_KEYWORD_METHOD = "START keyword"


def find_profile_by_phone(db: Session, phone: str) -> Profile | None:
    """Find the customer profile holding a phone number (first match)."""
    return (
        db.execute(select(Profile).where(Profile.phone.in_(phone_variants(phone))).order_by(Profile.created_at))
        .scalars()
        .first()
    )


def _profiles_for_phone(db: Session, phone: str) -> list[Profile]:
    return list(db.execute(select(Profile).where(Profile.phone.in_(phone_variants(phone)))).scalars().all())


def get_opt_out(db: Session, phone: str) -> SmsOptOut | None:
    return db.execute(select(SmsOptOut).where(SmsOptOut.phone_number == phone)).scalar_one_or_none()


def is_opted_out(db: Session, phone: str) -> bool:
    return get_opt_out(db, phone) is not None


def load_opted_out_phones(db: Session) -> set[str]:
    """Whole opt-out ledger as a set, for batch eligibility checks."""
    return set(db.execute(select(SmsOptOut.phone_number)).scalars().all())


def is_eligible(db: Session, phone: str) -> bool:
    """True iff a profile for the phone has consented and the phone is not opted out."""
    normalized = normalize_phone(phone)
    if normalized is None:
        return False
    profile = find_profile_by_phone(db, normalized)
    if profile is None or not profile.sms_consent:
        return False
    return not is_opted_out(db, normalized)


def record_opt_out(
    db: Session,
    phone: str,
    method: str = STOP_KEYWORD_METHOD,
    notes: str | None = None,
    commit: bool = True,
) -> SmsOptOut:
    """Add the phone to the opt-out ledger and withdraw profile consent.

    Idempotent: an existing ledger row is kept as-is and returned.
    """
    phone = require_phone(phone)

    opt_out = get_opt_out(db, phone)
    if opt_out is None:
        opt_out = SmsOptOut(
            phone_number=phone,
            method=method,
            notes=notes,
            opted_out_at=datetime.now(timezone.utc),
        )
        db.add(opt_out)
        db.flush()
    else:
        logger.info("Opt-out for %s already on file since %s", phone, opt_out.opted_out_at)

    for profile in _profiles_for_phone(db, phone):
        profile.sms_consent = False

    if commit:
        db.commit()
    logger.info("Opt-out recorded: phone=%s method=%s", phone, method)
    return opt_out


def record_opt_in(db: Session, phone: str, method: str = START_KEYWORD_METHOD, commit: bool = True) -> bool:
    """Remove the phone from the opt-out ledger and restore profile consent.

    Returns True if a ledger row was removed.
    """
    phone = require_phone(phone)

    result = db.execute(delete(SmsOptOut).where(SmsOptOut.phone_number == phone))
    removed = result.rowcount > 0

    now = datetime.now(timezone.utc)
    for profile in _profiles_for_phone(db, phone):
        profile.sms_consent = True
        profile.sms_consent_method = method
        profile.sms_consent_date = now

    if commit:
        db.commit()
    logger.info("Opt-in recorded: phone=%s method=%s ledger_row_removed=%s", phone, method, removed)
    return removed


def update_profile_consent(db: Session, profile: Profile, consent: bool, method: str = "website") -> Profile:
    """Self-service consent change from the customer's own settings page."""
    if profile.phone is None:
        profile.sms_consent = consent
        db.commit()
        db.refresh(profile)
        return profile

    if consent:
        record_opt_in(db, profile.phone, method=method, commit=False)
    else:
        record_opt_out(db, profile.phone, method=method, notes="Changed in profile settings", commit=False)
    db.commit()
    db.refresh(profile)
    return profile


def submit_web_opt_in(
    db: Session,
    phone: str,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
    method: str = "web_form",
) -> Profile | SmsConsentRecord:
    """Public opt-in form.

    Updates the matching profile, or stores a standalone consent record for
    someone who is not a customer yet. Raises DuplicateError if the profile
    is already opted in.
    """
    phone = require_phone(phone)
    profile = find_profile_by_phone(db, phone)

    if profile is not None:
        if profile.sms_consent and not is_opted_out(db, phone):
            raise DuplicateError("This phone number is already opted in to SMS notifications")
        record_opt_in(db, phone, method=method)
        db.refresh(profile)
        return profile

    record = SmsConsentRecord(
        phone_number=phone,
        first_name=first_name,
        last_name=last_name,
        email=email,
        consent_given=True,
        consent_method=method,
        consent_date=datetime.now(timezone.utc),
    )
    db.add(record)
    record_opt_in(db, phone, method=method, commit=False)
    db.commit()
    db.refresh(record)
    logger.info("Web opt-in stored for non-customer phone=%s", phone)
    return record


def list_eligible_profiles(db: Session) -> list[Profile]:
    """Consented profiles with a phone on file that are not in the opt-out ledger."""
    opted_out = load_opted_out_phones(db)
    profiles = (
        db.execute(
            select(Profile)
            .where(Profile.sms_consent.is_(True), Profile.phone.isnot(None))
            .order_by(Profile.last_name.asc(), Profile.first_name.asc())
        )
        .scalars()
        .all()
    )
    return [p for p in profiles if normalize_phone(p.phone) not in opted_out]


def list_opt_outs(db: Session) -> list[SmsOptOut]:
    return list(db.execute(select(SmsOptOut).order_by(SmsOptOut.opted_out_at.desc())).scalars().all())
