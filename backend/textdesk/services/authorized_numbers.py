"""Authorized phone numbers: admin allow-list for 1:1 messaging.

Staff conversations carry unscripted content, so a number must be
explicitly authorized on top of marketing consent. Compliance is checked
when the number is authorized, and the row records that verification.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from textdesk.models.authorized_phone_number import AuthorizedPhoneNumber
from textdesk.services.consent import find_profile_by_phone, is_opted_out
from textdesk.services.errors import ComplianceError, CustomerNotFoundError, DuplicateError, NotFoundError
from textdesk.services.phone import require_phone

logger = logging.getLogger(__name__)


def get_active_authorization(db: Session, phone: str) -> AuthorizedPhoneNumber | None:
    return db.execute(
        select(AuthorizedPhoneNumber).where(
            AuthorizedPhoneNumber.phone_number == phone,
            AuthorizedPhoneNumber.is_active.is_(True),
        )
    ).scalar_one_or_none()


def is_authorized(db: Session, phone: str) -> bool:
    return get_active_authorization(db, phone) is not None


def authorize(
    db: Session,
    phone: str,
    notes: str | None = None,
    added_by: uuid.UUID | None = None,
) -> AuthorizedPhoneNumber:
    """Add a phone number to the allow-list after verifying compliance.

    Checks run in order: customer exists, not opted out, consent granted,
    not already authorized.
    """
    phone = require_phone(phone)

    profile = find_profile_by_phone(db, phone)
    if profile is None:
        raise CustomerNotFoundError("Phone number not found in customer database")

    if is_opted_out(db, phone):
        raise ComplianceError("Customer has opted out of SMS communications")

    if not profile.sms_consent:
        raise ComplianceError("Customer has not consented to SMS communications")

    if get_active_authorization(db, phone) is not None:
        raise DuplicateError("Phone number already authorized")

    authorized = AuthorizedPhoneNumber(
        phone_number=phone,
        compliance_verified=True,
        verification_date=datetime.now(timezone.utc),
        verification_notes=notes,
        added_by=added_by,
        is_active=True,
    )
    db.add(authorized)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateError("Phone number already authorized") from exc
    db.refresh(authorized)

    logger.info("Phone number authorized for 1:1 SMS: phone=%s id=%s by=%s", phone, authorized.id, added_by)
    return authorized


def revoke(db: Session, authorized_id: uuid.UUID) -> AuthorizedPhoneNumber:
    """Deactivate an allow-list entry. The row is kept for the audit trail."""
    authorized = db.get(AuthorizedPhoneNumber, authorized_id)
    if authorized is None:
        raise NotFoundError("Authorized phone number not found")

    authorized.is_active = False
    db.commit()
    db.refresh(authorized)

    logger.info("Phone number authorization revoked: phone=%s id=%s", authorized.phone_number, authorized.id)
    return authorized


def list_active(db: Session) -> list[AuthorizedPhoneNumber]:
    return list(
        db.execute(
            select(AuthorizedPhoneNumber)
            .where(AuthorizedPhoneNumber.is_active.is_(True))
            .order_by(AuthorizedPhoneNumber.created_at.desc())
        )
        .scalars()
        .all()
    )
