"""Delivery status reconciliation: polls Twilio for messages whose status callback never arrived."""

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from textdesk.core.config import settings
from textdesk.core.database import session_scope
from textdesk.models.sms_message import TERMINAL_STATUSES, SmsMessage
from textdesk.models.sms_message_audit import SmsMessageAudit
from textdesk.schemas.campaigns import StatusCheckResult, StatusPollResponse
from textdesk.services.conversations import AUDIT_TERMINAL_STATUSES, normalize_carrier_status
from textdesk.services.errors import ValidationError
from textdesk.services.realtime import publish_change
from textdesk.services.telephony import BaseSmsProvider, get_twilio_provider
from textdesk.services.telephony.exceptions import TelephonyError

logger = logging.getLogger(__name__)


def _pending_messages(db: Session, limit: int) -> list[SmsMessage]:
    return list(
        db.execute(
            select(SmsMessage)
            .where(
                SmsMessage.direction == "outbound",
                SmsMessage.twilio_sid.isnot(None),
                SmsMessage.status.notin_(TERMINAL_STATUSES),
                SmsMessage.status_check_count < settings.STATUS_POLL_MAX_CHECKS,
            )
            .order_by(SmsMessage.status_checked_at.asc().nullsfirst(), SmsMessage.sent_at.asc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


def _pending_audit_rows(db: Session, limit: int) -> list[SmsMessageAudit]:
    return list(
        db.execute(
            select(SmsMessageAudit)
            .where(
                SmsMessageAudit.twilio_sid.isnot(None),
                SmsMessageAudit.twilio_status.notin_(AUDIT_TERMINAL_STATUSES),
                SmsMessageAudit.status_check_count < settings.STATUS_POLL_MAX_CHECKS,
            )
            .order_by(SmsMessageAudit.status_checked_at.asc().nullsfirst(), SmsMessageAudit.sent_at.asc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


async def _check_one(
    db: Session,
    provider: BaseSmsProvider,
    row: SmsMessage | SmsMessageAudit,
) -> StatusCheckResult:
    is_message = isinstance(row, SmsMessage)
    old_status = row.status if is_message else row.twilio_status
    result = StatusCheckResult(
        source="message" if is_message else "audit",
        record_id=row.id,
        twilio_sid=row.twilio_sid,
        old_status=old_status,
        new_status=old_status,
    )

    try:
        remote = await provider.fetch_message(row.twilio_sid)
    except TelephonyError as exc:
        # Count failed lookups too, so a SID Twilio no longer knows stops being polled
        row.status_check_count = (row.status_check_count or 0) + 1
        row.status_checked_at = datetime.now(timezone.utc)
        db.commit()
        result.error = str(exc)
        logger.warning("Status check failed for sid=%s: %s", row.twilio_sid, exc)
        return result

    new_status = normalize_carrier_status(remote.status) if is_message else remote.status
    result.new_status = new_status

    if new_status != old_status:
        if is_message:
            row.status = new_status
        else:
            row.twilio_status = new_status
        if remote.error_code:
            row.error_code = remote.error_code
        if remote.error_message:
            row.error_message = remote.error_message
        result.updated = True

    row.status_check_count = (row.status_check_count or 0) + 1
    row.status_checked_at = datetime.now(timezone.utc)
    db.commit()

    if result.updated:
        logger.info("Status reconciled: sid=%s %s -> %s", row.twilio_sid, old_status, new_status)
        if is_message:
            publish_change("sms_messages", "UPDATE", row)
    return result


async def reconcile_message_statuses(
    db: Session,
    limit: int | None = None,
    provider: BaseSmsProvider | None = None,
    delay_seconds: float | None = None,
) -> StatusPollResponse:
    """Fetch the carrier status of up to ``limit`` unsettled messages and store changes.

    Covers conversation messages first, then campaign audit rows. Each row's
    check count grows on every attempt; rows at STATUS_POLL_MAX_CHECKS are
    no longer selected.
    """
    limit = settings.STATUS_POLL_BATCH_LIMIT if limit is None else limit
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    if limit > settings.STATUS_POLL_MAX_LIMIT:
        raise ValidationError(f"Maximum limit is {settings.STATUS_POLL_MAX_LIMIT} messages per request")
    delay = settings.STATUS_POLL_DELAY_SECONDS if delay_seconds is None else delay_seconds

    rows: list[SmsMessage | SmsMessageAudit] = list(_pending_messages(db, limit))
    if len(rows) < limit:
        rows.extend(_pending_audit_rows(db, limit - len(rows)))

    if not rows:
        return StatusPollResponse(message="No messages need status checking at this time")

    provider = provider or get_twilio_provider()

    results: list[StatusCheckResult] = []
    for row in rows:
        try:
            results.append(await _check_one(db, provider, row))
        except Exception as exc:
            logger.exception("Error reconciling sid=%s", row.twilio_sid)
            db.rollback()
            old_status = row.status if isinstance(row, SmsMessage) else row.twilio_status
            results.append(
                StatusCheckResult(
                    source="message" if isinstance(row, SmsMessage) else "audit",
                    record_id=row.id,
                    twilio_sid=row.twilio_sid,
                    old_status=old_status,
                    new_status=old_status,
                    error=str(exc),
                )
            )
        if delay > 0:
            await asyncio.sleep(delay)

    updated = sum(1 for r in results if r.updated)
    return StatusPollResponse(
        message=f"Status check completed. {updated} messages updated out of {len(results)} checked.",
        checked=len(results),
        updated=updated,
        results=results,
    )


async def status_poll_loop() -> None:
    """Background loop that reconciles statuses every STATUS_POLL_INTERVAL_SECONDS."""
    interval = settings.STATUS_POLL_INTERVAL_SECONDS
    logger.info("Status poller started (interval: %ds)", interval)

    while True:
        try:
            with session_scope() as db:
                outcome = await reconcile_message_statuses(db)
            if outcome.updated > 0:
                logger.info("Status poller updated %d message(s)", outcome.updated)
        except Exception:
            logger.exception("Error in status poll loop")

        await asyncio.sleep(interval)
