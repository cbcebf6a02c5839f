"""Batch campaign dispatcher: one template sent to a list of customers.

Recipients are processed sequentially in the order given. Each recipient is
checked against consent and the opt-out ledger, then sent or skipped, and
its audit row is committed before moving to the next one, so the audit
trail's insertion order matches attempt order. A fixed delay after each
send attempt paces carrier throughput.
"""

import asyncio
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from textdesk.core.config import settings
from textdesk.models.profile import Profile
from textdesk.models.sms_message_audit import SmsMessageAudit
from textdesk.schemas.campaigns import (
    BatchCampaignSummary,
    BatchSendResponse,
    BatchSummary,
    RecipientResult,
)
from textdesk.services.consent import load_opted_out_phones
from textdesk.services.errors import NotFoundError, ValidationError
from textdesk.services.phone import normalize_phone
from textdesk.services.telephony import BaseSmsProvider, SmsResult, get_twilio_provider
from textdesk.services.telephony.exceptions import TelephonyError, TelephonyProviderError

logger = logging.getLogger(__name__)

FIRST_NAME_TOKEN = "[First Name]"

SKIP_USER_NOT_FOUND = "User not found"
SKIP_NO_PHONE = "No phone number on file"
SKIP_INVALID_PHONE = "Phone number on file is not a valid mobile number"
SKIP_NO_CONSENT = "User has not consented to SMS"
SKIP_OPTED_OUT = "User has opted out of SMS communications"

# Placeholder phone for audit rows of recipients with no usable number
NO_PHONE = "N/A"


def validate_batch_request(user_ids: Sequence, template: str | None) -> str:
    """Reject an empty or oversized batch, or a blank template.

    Returns the template stripped of surrounding whitespace.
    """
    if not user_ids:
        raise ValidationError("userIds array is required and cannot be empty")
    if len(user_ids) > settings.SMS_BATCH_MAX_RECIPIENTS:
        raise ValidationError(f"Maximum {settings.SMS_BATCH_MAX_RECIPIENTS} users per batch")
    template = (template or "").strip()
    if not template:
        raise ValidationError("messageTemplate is required and cannot be empty")
    return template


def render_message(template: str, first_name: str | None) -> str:
    """Substitute every ``[First Name]`` token, falling back to the default name."""
    name = (first_name or "").strip() or settings.SMS_DEFAULT_FIRST_NAME
    return template.replace(FIRST_NAME_TOKEN, name)


def _parse_user_id(raw) -> uuid.UUID | None:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


def _load_profiles(db: Session, user_ids: Sequence) -> dict[uuid.UUID, Profile]:
    ids = {uid for uid in (_parse_user_id(raw) for raw in user_ids) if uid is not None}
    if not ids:
        return {}
    profiles = db.execute(select(Profile).where(Profile.id.in_(ids))).scalars().all()
    return {p.id: p for p in profiles}


def _write_audit(
    db: Session,
    batch_id: uuid.UUID,
    template: str,
    sent_by: uuid.UUID | None,
    user_id: uuid.UUID | None,
    phone: str,
    status: str,
    body: str = "",
    twilio_sid: str | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
) -> SmsMessageAudit:
    row = SmsMessageAudit(
        user_id=user_id,
        phone_number=phone,
        message_body=body,
        template_used=template,
        twilio_sid=twilio_sid,
        twilio_status=status,
        error_code=error_code,
        error_message=error_message,
        sent_by=sent_by,
        batch_id=batch_id,
        sent_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    return row


def _skip(
    db: Session,
    batch_id: uuid.UUID,
    template: str,
    sent_by: uuid.UUID | None,
    raw_user_id,
    user_id: uuid.UUID | None,
    phone: str,
    reason: str,
) -> RecipientResult:
    _write_audit(db, batch_id, template, sent_by, user_id, phone, "skipped", error_message=reason)
    logger.info("Batch %s: skipped user=%s (%s)", batch_id, raw_user_id, reason)
    return RecipientResult(user_id=str(raw_user_id), phone=phone, status="skipped", reason=reason)


async def _process_recipient(
    db: Session,
    provider: BaseSmsProvider,
    batch_id: uuid.UUID,
    template: str,
    sent_by: uuid.UUID | None,
    raw_user_id,
    profiles: dict[uuid.UUID, Profile],
    opted_out: set[str],
) -> tuple[RecipientResult, bool]:
    """Evaluate and, if eligible, send to one recipient.

    Returns the result and whether a carrier send was attempted.
    """
    user_id = _parse_user_id(raw_user_id)
    profile = profiles.get(user_id) if user_id is not None else None
    if profile is None:
        return _skip(db, batch_id, template, sent_by, raw_user_id, None, NO_PHONE, SKIP_USER_NOT_FOUND), False

    if not profile.phone:
        return _skip(db, batch_id, template, sent_by, raw_user_id, profile.id, NO_PHONE, SKIP_NO_PHONE), False

    phone = normalize_phone(profile.phone)
    if phone is None:
        skipped = _skip(db, batch_id, template, sent_by, raw_user_id, profile.id, profile.phone, SKIP_INVALID_PHONE)
        return skipped, False

    if not profile.sms_consent:
        return _skip(db, batch_id, template, sent_by, raw_user_id, profile.id, phone, SKIP_NO_CONSENT), False

    if phone in opted_out:
        return _skip(db, batch_id, template, sent_by, raw_user_id, profile.id, phone, SKIP_OPTED_OUT), False

    body = render_message(template, profile.first_name)
    try:
        result: SmsResult = await provider.send_sms(to=phone, body=body)
    except TelephonyError as exc:
        code = exc.code if isinstance(exc, TelephonyProviderError) else None
        error = exc.error_message if isinstance(exc, TelephonyProviderError) else str(exc)
        _write_audit(
            db,
            batch_id,
            template,
            sent_by,
            profile.id,
            phone,
            "failed",
            body=body,
            error_code=code,
            error_message=error,
        )
        logger.warning("Batch %s: send to %s failed: %s", batch_id, phone, error)
        return (
            RecipientResult(
                user_id=str(raw_user_id),
                phone=phone,
                status="failed",
                error_code=code,
                error=error,
            ),
            True,
        )

    audit_args = (db, batch_id, template, sent_by, profile.id, phone, result.status)
    try:
        _write_audit(*audit_args, body=body, twilio_sid=result.message_id)
    except Exception:
        # Carrier accepted the message; never recorded as failed
        logger.exception("Batch %s: audit write for sent message %s failed, retrying", batch_id, result.message_id)
        db.rollback()
        try:
            _write_audit(*audit_args, body=body, twilio_sid=result.message_id)
        except Exception:
            logger.exception(
                "Batch %s: no audit row for sent message %s to %s", batch_id, result.message_id, phone
            )
            db.rollback()
    return (
        RecipientResult(
            user_id=str(raw_user_id),
            phone=phone,
            status="success",
            twilio_sid=result.message_id,
            twilio_status=result.status,
        ),
        True,
    )


async def send_batch(
    db: Session,
    user_ids: Sequence,
    template: str,
    sent_by: uuid.UUID | None,
    provider: BaseSmsProvider | None = None,
    delay_seconds: float | None = None,
) -> BatchSendResponse:
    """Send a templated SMS to each distinct user, recording one audit row per recipient.

    Validation failures raise before any side effect. After that the batch
    always runs to completion: compliance problems become skipped outcomes
    and carrier errors become failed outcomes, never an aborted batch.
    """
    template = validate_batch_request(user_ids, template)
    # A recipient listed more than once is sent to once, at its first position
    user_ids = list(dict.fromkeys(str(raw) for raw in user_ids))
    provider = provider or get_twilio_provider()
    delay = settings.SMS_BATCH_SEND_DELAY_SECONDS if delay_seconds is None else delay_seconds

    batch_id = uuid.uuid4()
    profiles = _load_profiles(db, user_ids)
    opted_out = load_opted_out_phones(db)

    logger.info(
        "Batch %s started: recipients=%d found=%d sent_by=%s",
        batch_id,
        len(user_ids),
        len(profiles),
        sent_by,
    )

    results: list[RecipientResult] = []
    for raw_user_id in user_ids:
        attempted = False
        try:
            result, attempted = await _process_recipient(
                db, provider, batch_id, template, sent_by, raw_user_id, profiles, opted_out
            )
        except Exception as exc:
            logger.exception("Batch %s: unexpected error for user=%s", batch_id, raw_user_id)
            db.rollback()
            profile = profiles.get(_parse_user_id(raw_user_id))
            phone = normalize_phone(profile.phone) if profile is not None and profile.phone else None
            try:
                _write_audit(
                    db,
                    batch_id,
                    template,
                    sent_by,
                    profile.id if profile is not None else None,
                    phone or NO_PHONE,
                    "failed",
                    error_message=str(exc),
                )
            except Exception:
                logger.exception("Batch %s: could not write audit row for user=%s", batch_id, raw_user_id)
                db.rollback()
            result = RecipientResult(
                user_id=str(raw_user_id),
                phone=phone or NO_PHONE,
                status="failed",
                error=str(exc),
            )
        results.append(result)

        if attempted and delay > 0:
            await asyncio.sleep(delay)

    summary = BatchSummary(
        total=len(results),
        successful=sum(1 for r in results if r.status == "success"),
        failed=sum(1 for r in results if r.status == "failed"),
        skipped=sum(1 for r in results if r.status == "skipped"),
    )
    message = (
        f"Batch SMS campaign completed. {summary.successful} sent, "
        f"{summary.failed} failed, {summary.skipped} skipped."
    )
    logger.info("Batch %s finished: %s", batch_id, message)

    return BatchSendResponse(
        success=True,
        batch_id=batch_id,
        summary=summary,
        results=results,
        message=message,
    )


# ---------------------------------------------------------------------------
# Batch history
# ---------------------------------------------------------------------------


def _summary_query():
    status = SmsMessageAudit.twilio_status
    return select(
        SmsMessageAudit.batch_id,
        func.min(SmsMessageAudit.template_used),
        func.min(SmsMessageAudit.sent_at),
        func.count(),
        func.count(SmsMessageAudit.twilio_sid),
        func.sum(case((status.in_(("queued", "accepted", "sending", "sent")), 1), else_=0)),
        func.sum(case((status == "delivered", 1), else_=0)),
        func.sum(case((status.in_(("failed", "undelivered")), 1), else_=0)),
        func.sum(case((status == "skipped", 1), else_=0)),
    ).where(SmsMessageAudit.batch_id.isnot(None))


def _to_summary(db: Session, row) -> BatchCampaignSummary:
    batch_id, template, started_at, total, sent, pending, delivered, failed, skipped = row
    sender = db.execute(
        select(Profile)
        .join(SmsMessageAudit, SmsMessageAudit.sent_by == Profile.id)
        .where(SmsMessageAudit.batch_id == batch_id)
        .limit(1)
    ).scalar_one_or_none()
    return BatchCampaignSummary(
        batch_id=batch_id,
        template_used=template,
        sent_by=sender.id if sender is not None else None,
        sender_name=sender.full_name if sender is not None else None,
        started_at=started_at,
        total=total,
        sent=sent or 0,
        delivered=delivered or 0,
        failed=failed or 0,
        skipped=skipped or 0,
        pending=pending or 0,
    )


def get_batch_summary(db: Session, batch_id: uuid.UUID) -> BatchCampaignSummary:
    """Roll up a batch's audit rows by outcome."""
    row = db.execute(
        _summary_query().where(SmsMessageAudit.batch_id == batch_id).group_by(SmsMessageAudit.batch_id)
    ).first()
    if row is None:
        raise NotFoundError("Batch not found")
    return _to_summary(db, row)


def list_batches(db: Session, limit: int = 50) -> list[BatchCampaignSummary]:
    """Most recent batches first."""
    rows = db.execute(
        _summary_query()
        .group_by(SmsMessageAudit.batch_id)
        .order_by(func.min(SmsMessageAudit.sent_at).desc())
        .limit(limit)
    ).all()
    return [_to_summary(db, row) for row in rows]
